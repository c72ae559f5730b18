"""
Approval domain types (``cyclecount_kernel.domain.approval``).

Responsibility
--------------
Authority tiers, actors, decision records and the single authority check
used by every approval path.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Tiers are totally ordered: operator < lead < supervisor < manager.
* ``has_authority`` is the only place a tier comparison happens.  Roles are
  opaque strings; an unresolved role has no authority at all.
* Decision records are append-only (see ``db/immutability.py``).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum
from uuid import UUID

from cyclecount_kernel.exceptions import InsufficientAuthorityError


class ApprovalTier(IntEnum):
    """Ordered approval authority tiers."""

    OPERATOR = 0
    LEAD = 1
    SUPERVISOR = 2
    MANAGER = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> ApprovalTier:
        try:
            return cls[label.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown approval tier: {label!r}") from None

    def next_above(self) -> ApprovalTier:
        """The tier one step up, capped at MANAGER."""
        return ApprovalTier(min(self.value + 1, ApprovalTier.MANAGER.value))


class ApprovalAction(str, Enum):
    """Actions an approver can record."""

    APPROVE = "approve"
    REJECT = "reject"
    ESCALATE = "escalate"
    VOID = "void"


@dataclass(frozen=True)
class Actor:
    """Caller identity as supplied by the identity provider."""

    actor_id: str
    role: str


@dataclass(frozen=True)
class ApprovalDecisionRecord:
    """Record of a single approval decision. Immutable.

    ``line_id`` is None for journal-level decisions.  ``pass_number`` is the
    line's counting pass the decision applies to.
    """

    decision_id: UUID
    journal_id: UUID
    review_round: int
    actor_id: str
    actor_role: str
    action: ApprovalAction
    actor_tier: ApprovalTier | None = None
    line_id: UUID | None = None
    pass_number: int | None = None
    escalation_target: ApprovalTier | None = None
    comment: str = ""
    decided_at: datetime | None = None


def resolve_tier(
    role: str, role_tiers: Mapping[str, ApprovalTier | None]
) -> ApprovalTier | None:
    """Map an opaque role string to its tier.  Unknown roles resolve to None."""
    return role_tiers.get(role.strip().lower())


def has_authority(actor_tier: ApprovalTier | None, required_tier: ApprovalTier) -> bool:
    """The single authority predicate: actor tier at or above the requirement."""
    if actor_tier is None:
        return False
    return actor_tier >= required_tier


def require_authority(
    actor: Actor,
    actor_tier: ApprovalTier | None,
    required_tier: ApprovalTier,
    target: str,
) -> None:
    """Raise InsufficientAuthorityError unless ``has_authority`` holds."""
    if not has_authority(actor_tier, required_tier):
        raise InsufficientAuthorityError(
            actor_role=actor.role,
            required_tier=required_tier.label,
            target=target,
        )
