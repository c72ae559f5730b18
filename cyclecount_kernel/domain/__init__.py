"""
Domain layer: pure value objects and state machines.

ZERO I/O.  Nothing here imports from db/, models/, services/ or outer
packages.
"""

from cyclecount_kernel.domain.approval import (
    Actor,
    ApprovalAction,
    ApprovalDecisionRecord,
    ApprovalTier,
    has_authority,
    require_authority,
    resolve_tier,
)
from cyclecount_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from cyclecount_kernel.domain.dispatch import (
    DispatchFilters,
    EligibilityResult,
    OperatorProfile,
)
from cyclecount_kernel.domain.events import CountEvent, EventType
from cyclecount_kernel.domain.journal import (
    JOURNAL_TRANSITIONS,
    TERMINAL_JOURNAL_STATUSES,
    CountPass,
    Evidence,
    Journal,
    JournalLine,
    JournalStatus,
    JournalSummary,
    LineStatus,
)
from cyclecount_kernel.domain.plan import (
    PLAN_TRANSITIONS,
    Cadence,
    CountPlan,
    PlanStatus,
    ScopeSelector,
)
from cyclecount_kernel.domain.reconciliation import (
    ReconciliationBatch,
    ReconciliationEntry,
)
from cyclecount_kernel.domain.snapshot import InventorySnapshot, SnapshotRow
from cyclecount_kernel.domain.variance import (
    Severity,
    SeverityRule,
    VarianceInput,
    VarianceMetric,
    VarianceRecord,
    VarianceResult,
)

__all__ = [
    "Actor",
    "ApprovalAction",
    "ApprovalDecisionRecord",
    "ApprovalTier",
    "Cadence",
    "Clock",
    "CountEvent",
    "CountPass",
    "CountPlan",
    "DeterministicClock",
    "DispatchFilters",
    "EligibilityResult",
    "EventType",
    "Evidence",
    "InventorySnapshot",
    "JOURNAL_TRANSITIONS",
    "Journal",
    "JournalLine",
    "JournalStatus",
    "JournalSummary",
    "LineStatus",
    "OperatorProfile",
    "PLAN_TRANSITIONS",
    "PlanStatus",
    "ReconciliationBatch",
    "ReconciliationEntry",
    "ScopeSelector",
    "Severity",
    "SeverityRule",
    "SnapshotRow",
    "SystemClock",
    "TERMINAL_JOURNAL_STATUSES",
    "VarianceInput",
    "VarianceMetric",
    "VarianceRecord",
    "VarianceResult",
    "has_authority",
    "require_authority",
    "resolve_tier",
]
