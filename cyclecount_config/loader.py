"""
Configuration Loader (``cyclecount_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the frozen
``CycleCountConfig``.  The single public entry point for runtime config
is ``cyclecount_config.get_active_config()``; the functions here are
its building blocks and test tooling.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required sections.
* ``compute_checksum`` produces a deterministic SHA-256 of the document
  for configuration identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from cyclecount_config.schema import CycleCountConfig
from cyclecount_kernel.domain.approval import ApprovalTier
from cyclecount_kernel.domain.variance import Severity, SeverityRule, VarianceMetric


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty document yields ``{}``."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_severity_rule(data: dict[str, Any]) -> SeverityRule:
    return SeverityRule(
        name=data["name"],
        severity=Severity(data["severity"]),
        metric=VarianceMetric(data["metric"]),
        threshold=Decimal(str(data["threshold"])),
    )


def parse_severity_tiers(data: dict[str, Any]) -> dict[Severity, ApprovalTier]:
    return {Severity(key): ApprovalTier.from_label(label) for key, label in data.items()}


def parse_role_tiers(data: dict[str, Any]) -> dict[str, ApprovalTier | None]:
    return {
        str(role).strip().lower(): (
            ApprovalTier.from_label(label) if label is not None else None
        )
        for role, label in data.items()
    }


def parse_config(data: dict[str, Any]) -> CycleCountConfig:
    """
    Parse a validated document into ``CycleCountConfig``.

    Raises:
        KeyError: if a required section is missing.
        ValueError: if a label or number cannot be parsed.
    """
    optional: dict[str, Any] = {}
    for key in ("lease_minutes", "max_passes", "max_serials_per_line", "default_journal_size"):
        if key in data:
            optional[key] = int(data[key])
    for key in ("skipped_line_tier", "plan_authority_tier", "reassign_authority_tier"):
        if key in data:
            optional[key] = ApprovalTier.from_label(data[key])

    return CycleCountConfig(
        severity_rules=tuple(parse_severity_rule(r) for r in data["severity_rules"]),
        severity_tiers=parse_severity_tiers(data["severity_tiers"]),
        role_tiers=parse_role_tiers(data["role_tiers"]),
        config_id=str(data.get("config_id", "cycle_count_default")),
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
        **optional,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data`` (deterministic)."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
