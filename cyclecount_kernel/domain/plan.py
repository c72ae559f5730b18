"""
Count plan domain types (``cyclecount_kernel.domain.plan``).

Responsibility
--------------
Pure value objects for count plans: the plan lifecycle, cadence, and the
scope selectors that decide which snapshot rows a plan counts.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* ``PLAN_TRANSITIONS`` defines the only valid plan status changes.
  Closed is terminal.
* A snapshot row is in scope when it matches ANY selector of the plan.
  A selector matches when every field it sets matches.  An empty scope
  matches nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class PlanStatus(str, Enum):
    """Count plan lifecycle states."""

    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"


PLAN_TRANSITIONS: dict[PlanStatus, frozenset[PlanStatus]] = {
    PlanStatus.DRAFT: frozenset({PlanStatus.ACTIVE}),
    PlanStatus.ACTIVE: frozenset({PlanStatus.CLOSED}),
    PlanStatus.CLOSED: frozenset(),
}


class Cadence(str, Enum):
    """How often a plan's scope is re-counted."""

    ADHOC = "adhoc"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


CADENCE_DAYS: dict[Cadence, int | None] = {
    Cadence.ADHOC: None,
    Cadence.DAILY: 1,
    Cadence.WEEKLY: 7,
    Cadence.MONTHLY: 30,
    Cadence.QUARTERLY: 91,
}


@dataclass(frozen=True)
class ScopeSelector:
    """One clause of a plan's scope.

    Unset fields do not constrain.  ``item_codes`` restricts to the listed
    items when non-empty.  ``location_prefix`` matches on a string prefix of
    the location code.
    """

    warehouse: str | None = None
    zone: str | None = None
    location_prefix: str | None = None
    item_codes: tuple[str, ...] = ()
    abc_class: str | None = None

    @property
    def is_empty(self) -> bool:
        return (
            self.warehouse is None
            and self.zone is None
            and self.location_prefix is None
            and not self.item_codes
            and self.abc_class is None
        )

    def matches(self, row: Any) -> bool:
        """Match a snapshot row (anything with the SnapshotRow attributes)."""
        if self.warehouse is not None and row.warehouse != self.warehouse:
            return False
        if self.zone is not None and row.zone != self.zone:
            return False
        if self.location_prefix is not None and not row.location_code.startswith(
            self.location_prefix
        ):
            return False
        if self.item_codes and row.item_code not in self.item_codes:
            return False
        if self.abc_class is not None and row.abc_class != self.abc_class:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "warehouse": self.warehouse,
            "zone": self.zone,
            "location_prefix": self.location_prefix,
            "item_codes": list(self.item_codes),
            "abc_class": self.abc_class,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScopeSelector:
        return cls(
            warehouse=data.get("warehouse"),
            zone=data.get("zone"),
            location_prefix=data.get("location_prefix"),
            item_codes=tuple(data.get("item_codes") or ()),
            abc_class=data.get("abc_class"),
        )


def in_scope(scope: tuple[ScopeSelector, ...], row: Any) -> bool:
    """True when ``row`` matches any selector of ``scope``."""
    return any(selector.matches(row) for selector in scope)


@dataclass(frozen=True)
class CountPlan:
    """Immutable snapshot of a count plan."""

    id: UUID
    code: str
    name: str
    scope: tuple[ScopeSelector, ...]
    cadence: Cadence
    due_start: datetime
    due_end: datetime
    journal_size: int
    status: PlanStatus
    created_by: str
    created_at: datetime
    interval_days: int | None = None
    activated_at: datetime | None = None
    closed_at: datetime | None = None
    close_reason: str | None = None

    @property
    def effective_interval_days(self) -> int | None:
        if self.interval_days is not None:
            return self.interval_days
        return CADENCE_DAYS[self.cadence]
