"""
Variance domain types (``cyclecount_kernel.domain.variance``).

Severity levels, classification rules and the records the variance
engine produces.  Pure value objects, ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from cyclecount_kernel.domain.approval import ApprovalTier


class Severity(str, Enum):
    """Variance severity, ordered by ``SEVERITY_RANK``."""

    NONE = "none"
    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK: dict[Severity, int] = {
    Severity.NONE: 0,
    Severity.MINOR: 1,
    Severity.MAJOR: 2,
    Severity.CRITICAL: 3,
}


class VarianceMetric(str, Enum):
    """Quantity a severity rule compares against its threshold."""

    PERCENT = "percent"
    ABSOLUTE = "absolute"
    VALUE = "value"


@dataclass(frozen=True)
class SeverityRule:
    """Classify as ``severity`` when ``metric >= threshold``."""

    name: str
    severity: Severity
    metric: VarianceMetric
    threshold: Decimal


@dataclass(frozen=True)
class VarianceInput:
    """Everything the variance engine needs about one line pass."""

    line_id: UUID
    pass_number: int
    expected: Decimal
    counted: Decimal | None
    unit_cost: Decimal | None = None
    skipped: bool = False


@dataclass(frozen=True)
class VarianceResult:
    """Pure classification result for one line pass."""

    line_id: UUID
    pass_number: int
    expected: Decimal
    counted: Decimal | None
    delta: Decimal
    abs_delta: Decimal
    percent_delta: Decimal
    severity: Severity
    required_tier: ApprovalTier
    value_delta: Decimal | None = None
    matched_rule: str | None = None
    skipped: bool = False


@dataclass(frozen=True)
class VarianceRecord:
    """Persisted variance of one line pass."""

    id: UUID
    journal_id: UUID
    line_id: UUID
    pass_number: int
    expected: Decimal
    counted: Decimal | None
    delta: Decimal
    abs_delta: Decimal
    percent_delta: Decimal
    severity: Severity
    required_tier: ApprovalTier
    computed_at: datetime
    value_delta: Decimal | None = None
    matched_rule: str | None = None
    skipped: bool = False
