"""
Module: cyclecount_kernel.models.approval
Responsibility: ORM persistence for approval decisions.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Decisions are append-only (db/immutability.py blocks UPDATE/DELETE).
    - UNIQUE(journal_id, decision_seq): the per-journal order of the log is
      total, assigned under the journal row lock.

Audit relevance:
    The decision log is the approval audit trail.  A journal's approval
    state is the fold of these rows.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from cyclecount_kernel.db.base import Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from cyclecount_kernel.domain.approval import ApprovalDecisionRecord


class ApprovalDecisionModel(Base):
    """Persistent approval decision. Append-only."""

    __tablename__ = "approval_decisions"

    __table_args__ = (
        CheckConstraint(
            "action IN ('approve', 'reject', 'escalate', 'void')",
            name="ck_approval_decisions_valid_action",
        ),
        UniqueConstraint("journal_id", "decision_seq", name="uq_approval_decisions_seq"),
        Index("ix_approval_decisions_journal_line", "journal_id", "line_id"),
    )

    journal_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journals.id"), nullable=False,
    )
    decision_seq: Mapped[int] = mapped_column(Integer, nullable=False)
    line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("journal_lines.id"), nullable=True,
    )
    pass_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    review_round: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_tier: Mapped[int | None] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    escalation_target: Mapped[int | None] = mapped_column(Integer, nullable=True)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    decided_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalDecision #{self.decision_seq} journal={self.journal_id} "
            f"action={self.action}>"
        )

    def to_dto(self) -> ApprovalDecisionRecord:
        from cyclecount_kernel.domain.approval import (
            ApprovalAction,
            ApprovalDecisionRecord as DecisionDTO,
            ApprovalTier,
        )

        return DecisionDTO(
            decision_id=self.id,
            journal_id=self.journal_id,
            line_id=self.line_id,
            pass_number=self.pass_number,
            review_round=self.review_round,
            actor_id=self.actor_id,
            actor_role=self.actor_role,
            actor_tier=ApprovalTier(self.actor_tier) if self.actor_tier is not None else None,
            action=ApprovalAction(self.action),
            escalation_target=(
                ApprovalTier(self.escalation_target)
                if self.escalation_target is not None
                else None
            ),
            comment=self.comment,
            decided_at=self.decided_at,
        )
