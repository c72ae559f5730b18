"""
Domain events (``cyclecount_kernel.domain.events``).

Every state transition the engine commits is described by an immutable
``CountEvent``.  Events replace shared dashboard state: the UI and
notification layers subscribe instead of polling tables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class EventType(str, Enum):
    PLAN_CREATED = "plan.created"
    PLAN_ACTIVATED = "plan.activated"
    PLAN_CLOSED = "plan.closed"
    JOURNAL_CREATED = "journal.created"
    JOURNAL_CLAIMED = "journal.claimed"
    JOURNAL_RELEASED = "journal.released"
    JOURNAL_REASSIGNED = "journal.reassigned"
    JOURNAL_LEASE_EXPIRED = "journal.lease_expired"
    JOURNAL_LEASE_RENEWED = "journal.lease_renewed"
    LINE_COUNTED = "line.counted"
    LINE_SKIPPED = "line.skipped"
    JOURNAL_SUBMITTED = "journal.submitted"
    JOURNAL_REVIEW_STARTED = "journal.review_started"
    LINE_APPROVED = "line.approved"
    LINE_REJECTED = "line.rejected"
    JOURNAL_ESCALATED = "journal.escalated"
    JOURNAL_APPROVED = "journal.approved"
    JOURNAL_REJECTED = "journal.rejected"
    JOURNAL_RECONCILED = "journal.reconciled"
    RECONCILIATION_INTEGRITY_FAULT = "reconciliation.integrity_fault"


@dataclass(frozen=True)
class CountEvent:
    """Immutable record of a committed state transition."""

    event_id: UUID
    event_type: EventType
    occurred_at: datetime
    actor_id: str | None = None
    journal_id: UUID | None = None
    plan_id: UUID | None = None
    payload: dict[str, Any] = field(default_factory=dict)
