"""
Journal domain types (``cyclecount_kernel.domain.journal``).

Responsibility
--------------
The journal and line state machines and the immutable snapshots services
hand back to callers.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``JOURNAL_TRANSITIONS`` defines the only valid journal status changes.
  Rejected and Reconciled are terminal.
* A journal is held only while in Assigned or InProgress with a lease that
  has not lapsed.
* A line accepts counts only while Uncounted, Counted, RecountRequested
  or Skipped within an open pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from cyclecount_kernel.domain.approval import ApprovalTier


class JournalStatus(str, Enum):
    """Journal lifecycle states."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    RECONCILED = "reconciled"


JOURNAL_TRANSITIONS: dict[JournalStatus, frozenset[JournalStatus]] = {
    JournalStatus.PENDING: frozenset({JournalStatus.ASSIGNED}),
    JournalStatus.ASSIGNED: frozenset({
        JournalStatus.PENDING,
        JournalStatus.ASSIGNED,
        JournalStatus.IN_PROGRESS,
        JournalStatus.SUBMITTED,
    }),
    JournalStatus.IN_PROGRESS: frozenset({
        JournalStatus.PENDING,
        JournalStatus.ASSIGNED,
        JournalStatus.SUBMITTED,
    }),
    JournalStatus.SUBMITTED: frozenset({
        JournalStatus.UNDER_REVIEW,
        JournalStatus.REJECTED,
    }),
    JournalStatus.UNDER_REVIEW: frozenset({
        JournalStatus.APPROVED,
        JournalStatus.IN_PROGRESS,
        JournalStatus.REJECTED,
    }),
    JournalStatus.APPROVED: frozenset({JournalStatus.RECONCILED}),
    JournalStatus.REJECTED: frozenset(),
    JournalStatus.RECONCILED: frozenset(),
}

TERMINAL_JOURNAL_STATUSES: frozenset[JournalStatus] = frozenset({
    JournalStatus.REJECTED,
    JournalStatus.RECONCILED,
})

# Statuses in which a journal has a claimant and a lease
HELD_JOURNAL_STATUSES: frozenset[JournalStatus] = frozenset({
    JournalStatus.ASSIGNED,
    JournalStatus.IN_PROGRESS,
})

REVIEWABLE_JOURNAL_STATUSES: frozenset[JournalStatus] = frozenset({
    JournalStatus.SUBMITTED,
    JournalStatus.UNDER_REVIEW,
})


def can_transition(from_status: JournalStatus, to_status: JournalStatus) -> bool:
    return to_status in JOURNAL_TRANSITIONS.get(from_status, frozenset())


class LineStatus(str, Enum):
    """Journal line counting states."""

    UNCOUNTED = "uncounted"
    COUNTED = "counted"
    RECOUNT_REQUESTED = "recount_requested"
    SKIPPED = "skipped"


# Lines in these states block submission
OPEN_LINE_STATUSES: frozenset[LineStatus] = frozenset({
    LineStatus.UNCOUNTED,
    LineStatus.RECOUNT_REQUESTED,
})


@dataclass(frozen=True)
class Evidence:
    """References to evidence captured outside the engine."""

    serial_numbers: tuple[str, ...] = ()
    photo_refs: tuple[str, ...] = ()
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "serial_numbers": list(self.serial_numbers),
            "photo_refs": list(self.photo_refs),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Evidence:
        if not data:
            return cls()
        return cls(
            serial_numbers=tuple(data.get("serial_numbers") or ()),
            photo_refs=tuple(data.get("photo_refs") or ()),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class JournalLine:
    """Immutable snapshot of a journal line."""

    id: UUID
    journal_id: UUID
    sequence_number: int
    location_code: str
    item_code: str
    expected_quantity: Decimal
    status: LineStatus
    pass_number: int
    unit_cost: Decimal | None = None
    serial_required: bool = False
    counted_quantity: Decimal | None = None
    evidence: Evidence = field(default_factory=Evidence)
    skip_reason: str | None = None
    counted_by: str | None = None
    counted_at: datetime | None = None


@dataclass(frozen=True)
class Journal:
    """Immutable snapshot of a journal and its ordered lines."""

    id: UUID
    journal_number: str
    plan_id: UUID
    location_code: str
    warehouse: str
    zone: str | None
    status: JournalStatus
    review_round: int
    version: int
    required_skills: tuple[str, ...] = ()
    shift: str | None = None
    assigned_operator: str | None = None
    last_operator: str | None = None
    claimed_at: datetime | None = None
    lease_expires_at: datetime | None = None
    required_tier: ApprovalTier | None = None
    created_at: datetime | None = None
    lines: tuple[JournalLine, ...] = ()

    def lease_is_live(self, now: datetime) -> bool:
        return (
            self.status in HELD_JOURNAL_STATUSES
            and self.assigned_operator is not None
            and self.lease_expires_at is not None
            and self.lease_expires_at > now
        )

    def line(self, line_id: UUID) -> JournalLine:
        for line in self.lines:
            if line.id == line_id:
                return line
        raise KeyError(line_id)


@dataclass(frozen=True)
class JournalSummary:
    """Lightweight journal view for dispatch listings."""

    id: UUID
    journal_number: str
    plan_id: UUID
    location_code: str
    warehouse: str
    zone: str | None
    status: JournalStatus
    line_count: int
    required_skills: tuple[str, ...] = ()
    shift: str | None = None
    assigned_operator: str | None = None
    lease_expires_at: datetime | None = None


@dataclass(frozen=True)
class CountPass:
    """Frozen record of one counting pass of one line."""

    id: UUID
    line_id: UUID
    journal_id: UUID
    pass_number: int
    skipped: bool
    counted_by: str
    counted_at: datetime
    frozen_at: datetime
    counted_quantity: Decimal | None = None
    skip_reason: str | None = None
    evidence: Evidence = field(default_factory=Evidence)
