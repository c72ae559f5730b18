"""
cyclecount_config -- single public entrypoint for cycle count configuration.

Responsibility:
    ``get_active_config()`` is the ONLY way to obtain configuration at
    runtime.  Services receive the returned ``CycleCountConfig`` through
    their constructors and never read files or environment variables.

Architecture position:
    Configuration -- sits above ``cyclecount_kernel`` and below
    ``cyclecount_services``.  The kernel never imports this package at
    runtime; it only consumes the frozen value.

Failure modes:
    - ``FileNotFoundError`` -- the configured file does not exist.
    - ``InvalidConfigError`` -- validation or parsing failed.

Audit relevance:
    Every successful call emits a ``CYCLECOUNT_CONFIG_TRACE`` log entry with
    the config id, version, checksum and source path.
"""

from __future__ import annotations

import os
from pathlib import Path

from cyclecount_config.loader import compute_checksum, load_yaml_file, parse_config
from cyclecount_config.schema import CycleCountConfig
from cyclecount_config.validator import ConfigValidationResult, validate_config
from cyclecount_kernel.exceptions import InvalidConfigError
from cyclecount_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_ENV_VAR = "CYCLECOUNT_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "cycle_count.yaml"


def get_active_config(path: Path | str | None = None) -> CycleCountConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``path``, then the ``CYCLECOUNT_CONFIG``
    environment variable, then the shipped defaults.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        InvalidConfigError: If validation or parsing fails.
    """
    if path is not None:
        source = Path(path)
    elif os.environ.get(CONFIG_ENV_VAR):
        source = Path(os.environ[CONFIG_ENV_VAR])
    else:
        source = DEFAULT_CONFIG_PATH

    data = load_yaml_file(source)
    validation = validate_config(data)
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"warning": warning, "source": str(source)})
    if not validation.is_valid:
        raise InvalidConfigError(tuple(validation.errors))

    try:
        config = parse_config(data)
    except (KeyError, ValueError) as exc:
        raise InvalidConfigError((f"{type(exc).__name__}: {exc}",)) from exc

    _logger.info(
        "CYCLECOUNT_CONFIG_TRACE",
        extra={
            "trace_type": "CYCLECOUNT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(source),
            "severity_rule_count": len(config.severity_rules),
            "role_count": len(config.role_tiers),
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_PATH",
    "ConfigValidationResult",
    "CycleCountConfig",
    "compute_checksum",
    "get_active_config",
    "load_yaml_file",
    "parse_config",
    "validate_config",
]
