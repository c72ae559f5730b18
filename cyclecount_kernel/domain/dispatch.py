"""
Dispatch domain types (``cyclecount_kernel.domain.dispatch``).

Operator profiles, dispatch filters and eligibility results.  Operator
attributes are opaque inputs supplied by the identity/role source.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class OperatorProfile:
    """Floor operator as seen by the dispatch pool.

    Empty ``zones`` or ``warehouses`` means unrestricted.
    """

    operator_id: str
    role: str = "operator"
    zones: frozenset[str] = frozenset()
    warehouses: frozenset[str] = frozenset()
    skills: frozenset[str] = frozenset()
    shift: str | None = None
    available: bool = True


@dataclass(frozen=True)
class DispatchFilters:
    """Optional narrowing of ``list_eligible``."""

    warehouse: str | None = None
    zone: str | None = None
    plan_id: UUID | None = None
    limit: int = 50


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    reasons: tuple[str, ...] = ()
