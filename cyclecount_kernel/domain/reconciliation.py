"""
Reconciliation domain types (``cyclecount_kernel.domain.reconciliation``).

The inventory adjustment batch produced from an approved journal.
Exactly one batch exists per journal, and only for Reconciled journals.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class ReconciliationEntry:
    """Adjustment for one line: final counted minus frozen expected."""

    line_id: UUID
    sequence_number: int
    location_code: str
    item_code: str
    expected: Decimal
    counted: Decimal
    delta: Decimal


@dataclass(frozen=True)
class ReconciliationBatch:
    batch_id: UUID
    journal_id: UUID
    plan_id: UUID
    line_count: int
    batch_hash: str
    created_at: datetime
    entries: tuple[ReconciliationEntry, ...] = ()
    created_by: str | None = None

    @property
    def net_delta(self) -> Decimal:
        return sum((e.delta for e in self.entries), Decimal("0"))
