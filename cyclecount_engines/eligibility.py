"""
cyclecount_engines.eligibility -- Operator/journal eligibility predicate.

Responsibility:
    Decide whether an operator may take a journal (zone and warehouse
    access, required skills, shift, availability) and whether the journal
    is currently claimable at all (status and lease).

Architecture position:
    Engines -- pure, zero I/O.  ``now`` is always passed in.

Invariants enforced:
    - Empty operator zones/warehouses means unrestricted.
    - Journal shift None means any shift.
    - A held journal whose lease has lapsed is claimable by anyone eligible.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from cyclecount_kernel.domain.dispatch import EligibilityResult, OperatorProfile
from cyclecount_kernel.domain.journal import HELD_JOURNAL_STATUSES, JournalStatus


class ClaimState(str, Enum):
    """How a claim attempt on a journal would be treated."""

    OPEN = "open"
    HELD_BY_CALLER = "held_by_caller"
    HELD_BY_OTHER = "held_by_other"
    LEASE_LAPSED = "lease_lapsed"
    NOT_CLAIMABLE = "not_claimable"


def evaluate_eligibility(
    *,
    operator: OperatorProfile,
    warehouse: str,
    zone: str | None,
    required_skills: tuple[str, ...],
    shift: str | None,
) -> EligibilityResult:
    reasons: list[str] = []
    if not operator.available:
        reasons.append("operator_unavailable")
    if operator.warehouses and warehouse not in operator.warehouses:
        reasons.append("warehouse_not_permitted")
    if operator.zones and zone not in operator.zones:
        reasons.append("zone_not_permitted")
    missing = sorted(set(required_skills) - set(operator.skills))
    if missing:
        reasons.append("missing_skills:" + ",".join(missing))
    if shift is not None and operator.shift != shift:
        reasons.append("shift_mismatch")
    return EligibilityResult(eligible=not reasons, reasons=tuple(reasons))


def lease_lapsed(lease_expires_at: datetime | None, now: datetime) -> bool:
    return lease_expires_at is None or lease_expires_at <= now


def claim_state(
    *,
    status: JournalStatus,
    assigned_operator: str | None,
    lease_expires_at: datetime | None,
    operator_id: str,
    now: datetime,
) -> ClaimState:
    if status is JournalStatus.PENDING:
        return ClaimState.OPEN
    if status not in HELD_JOURNAL_STATUSES:
        return ClaimState.NOT_CLAIMABLE
    if assigned_operator == operator_id:
        return ClaimState.HELD_BY_CALLER
    if lease_lapsed(lease_expires_at, now):
        return ClaimState.LEASE_LAPSED
    return ClaimState.HELD_BY_OTHER
