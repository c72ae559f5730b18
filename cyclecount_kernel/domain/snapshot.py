"""
Inventory snapshot types (``cyclecount_kernel.domain.snapshot``).

Structured on-hand data consumed once by the journal factory.  Import
tooling is responsible for turning spreadsheets into these rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

# Stored as NUMERIC(18, 4).
MAX_INTEGER_DIGITS = 14


@dataclass(frozen=True)
class SnapshotRow:
    """On-hand quantity of one item at one location."""

    warehouse: str
    location_code: str
    item_code: str
    on_hand: Decimal
    zone: str | None = None
    unit_cost: Decimal | None = None
    serial_required: bool = False
    abc_class: str | None = None
    required_skills: tuple[str, ...] = ()
    shift: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.on_hand, Decimal):
            object.__setattr__(self, "on_hand", Decimal(str(self.on_hand)))
        if not self.on_hand.is_finite() or self.on_hand < 0:
            raise ValueError(
                f"On-hand for {self.item_code}@{self.location_code} must be a "
                f"non-negative number, got {self.on_hand}"
            )
        if self.on_hand and self.on_hand.adjusted() >= MAX_INTEGER_DIGITS:
            raise ValueError(
                f"On-hand for {self.item_code}@{self.location_code} exceeds "
                f"{MAX_INTEGER_DIGITS} integer digits, got {self.on_hand}"
            )
        if self.unit_cost is not None:
            if not isinstance(self.unit_cost, Decimal):
                object.__setattr__(self, "unit_cost", Decimal(str(self.unit_cost)))
            if not self.unit_cost.is_finite() or self.unit_cost < 0:
                raise ValueError(
                    f"Unit cost for {self.item_code} must be non-negative, "
                    f"got {self.unit_cost}"
                )


@dataclass(frozen=True)
class InventorySnapshot:
    snapshot_id: str
    taken_at: datetime
    rows: tuple[SnapshotRow, ...]
