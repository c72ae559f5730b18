"""
Module: cyclecount_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import cyclecount_kernel domain types and utils.
    MUST NOT import cyclecount_services.

Invariants enforced:
    - Purity: engines never read the clock; ``now`` is passed in.
    - Decimal-only arithmetic for quantities, costs and percentages.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine``
    (see ``cyclecount_engines.tracer``), emitting CYCLECOUNT_ENGINE_TRACE
    records with an input fingerprint.
"""

from cyclecount_engines.approval import (
    JournalApprovalState,
    LineApprovalState,
    LineRequirement,
    blocking_lines,
    escalation_target,
    fold_decisions,
)
from cyclecount_engines.eligibility import (
    ClaimState,
    claim_state,
    evaluate_eligibility,
    lease_lapsed,
)
from cyclecount_engines.reconciliation import batch_hash, compute_entries
from cyclecount_engines.tracer import compute_input_fingerprint, traced_engine
from cyclecount_engines.variance import (
    classify_variance,
    journal_required_tier,
    order_rules,
    percent_delta,
    select_severity,
)

__all__ = [
    "ClaimState",
    "JournalApprovalState",
    "LineApprovalState",
    "LineRequirement",
    "batch_hash",
    "blocking_lines",
    "claim_state",
    "classify_variance",
    "compute_entries",
    "compute_input_fingerprint",
    "escalation_target",
    "evaluate_eligibility",
    "fold_decisions",
    "journal_required_tier",
    "lease_lapsed",
    "order_rules",
    "percent_delta",
    "select_severity",
    "traced_engine",
]
