"""
Configuration Validator (``cyclecount_config.validator``).

Responsibility
--------------
Validates a raw configuration document before it is parsed, collecting
every problem instead of stopping at the first.

Invariants enforced
-------------------
* Severities and tiers must be known labels.
* ``severity_tiers`` must cover every severity and be monotonic: a more
  severe variance never needs a lower tier.
* Limits (lease minutes, max passes, max serials, journal size) positive.
* Rule thresholds are non-negative numbers; rule names are unique.

Failure modes
-------------
* Errors in ``ConfigValidationResult.errors`` -> the document MUST NOT be
  used.  ``get_active_config`` turns them into ``InvalidConfigError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from cyclecount_kernel.domain.approval import ApprovalTier
from cyclecount_kernel.domain.variance import SEVERITY_RANK, Severity, VarianceMetric

_POSITIVE_INT_KEYS = (
    "lease_minutes",
    "max_passes",
    "max_serials_per_line",
    "default_journal_size",
)

_TIER_KEYS = (
    "skipped_line_tier",
    "plan_authority_tier",
    "reassign_authority_tier",
)


@dataclass
class ConfigValidationResult:
    """``is_valid`` is True only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def _tier_label_ok(label: Any) -> bool:
    return isinstance(label, str) and label.strip().upper() in ApprovalTier.__members__


def _validate_rules(rules: Any, result: ConfigValidationResult) -> None:
    if not isinstance(rules, list) or not rules:
        result.add_error("severity_rules must be a non-empty list")
        return
    seen: set[str] = set()
    for i, rule in enumerate(rules):
        where = f"severity_rules[{i}]"
        if not isinstance(rule, dict):
            result.add_error(f"{where} must be a mapping")
            continue
        name = rule.get("name")
        if not name:
            result.add_error(f"{where} is missing a name")
        elif name in seen:
            result.add_error(f"{where} duplicate rule name {name!r}")
        else:
            seen.add(name)
        severity = rule.get("severity")
        if severity not in {s.value for s in Severity} or severity == Severity.NONE.value:
            result.add_error(f"{where} has unknown severity {severity!r}")
        metric = rule.get("metric")
        if metric not in {m.value for m in VarianceMetric}:
            result.add_error(f"{where} has unknown metric {metric!r}")
        try:
            threshold = Decimal(str(rule.get("threshold")))
        except InvalidOperation:
            result.add_error(f"{where} threshold is not a number")
            continue
        if not threshold.is_finite() or threshold < 0:
            result.add_error(f"{where} threshold must be a non-negative number")


def _validate_severity_tiers(mapping: Any, result: ConfigValidationResult) -> None:
    if not isinstance(mapping, dict):
        result.add_error("severity_tiers must be a mapping")
        return
    tiers: dict[Severity, ApprovalTier] = {}
    for key, label in mapping.items():
        if key not in {s.value for s in Severity}:
            result.add_error(f"severity_tiers has unknown severity {key!r}")
            continue
        if not _tier_label_ok(label):
            result.add_error(f"severity_tiers[{key}] has unknown tier {label!r}")
            continue
        tiers[Severity(key)] = ApprovalTier.from_label(label)

    missing = [s.value for s in Severity if s.value not in mapping]
    if missing:
        result.add_error(f"severity_tiers missing severities: {missing}")
        return

    ordered = sorted(tiers.items(), key=lambda kv: SEVERITY_RANK[kv[0]])
    for (lower_sev, lower_tier), (higher_sev, higher_tier) in zip(ordered, ordered[1:]):
        if higher_tier < lower_tier:
            result.add_error(
                f"severity_tiers not monotonic: {higher_sev.value} -> {higher_tier.label} "
                f"is below {lower_sev.value} -> {lower_tier.label}"
            )


def _validate_role_tiers(mapping: Any, result: ConfigValidationResult) -> None:
    if not isinstance(mapping, dict) or not mapping:
        result.add_error("role_tiers must be a non-empty mapping")
        return
    for role, label in mapping.items():
        if label is None:
            continue
        if not _tier_label_ok(label):
            result.add_error(f"role_tiers[{role}] has unknown tier {label!r}")
    if not any(
        _tier_label_ok(label) and ApprovalTier.from_label(label) is ApprovalTier.MANAGER
        for label in mapping.values()
        if label is not None
    ):
        result.add_warning("no role maps to the manager tier; critical variances cannot be approved")


def validate_config(data: dict[str, Any]) -> ConfigValidationResult:
    """Validate a raw configuration document."""
    result = ConfigValidationResult()

    _validate_rules(data.get("severity_rules"), result)
    _validate_severity_tiers(data.get("severity_tiers"), result)
    _validate_role_tiers(data.get("role_tiers"), result)

    for key in _POSITIVE_INT_KEYS:
        if key not in data:
            continue
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            result.add_error(f"{key} must be a positive integer, got {value!r}")

    for key in _TIER_KEYS:
        if key in data and not _tier_label_ok(data[key]):
            result.add_error(f"{key} has unknown tier {data[key]!r}")

    return result
