"""
Module: cyclecount_kernel.models.plan
Responsibility: ORM persistence for count plans.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - DB check constraints limit status and cadence values and require
      due_end > due_start and a positive journal size.
    - Plans are immutable once Active except for the status fields
      (db/immutability.py).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cyclecount_kernel.db.base import Base, UTCDateTime

if TYPE_CHECKING:
    from cyclecount_kernel.domain.plan import CountPlan


class CountPlanModel(Base):
    """Persistent count plan."""

    __tablename__ = "count_plans"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'active', 'closed')",
            name="ck_count_plans_valid_status",
        ),
        CheckConstraint(
            "cadence IN ('adhoc', 'daily', 'weekly', 'monthly', 'quarterly')",
            name="ck_count_plans_valid_cadence",
        ),
        CheckConstraint("journal_size > 0", name="ck_count_plans_journal_size"),
        CheckConstraint("due_end > due_start", name="ck_count_plans_due_window"),
        Index("ix_count_plans_status", "status"),
    )

    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    scope: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    cadence: Mapped[str] = mapped_column(String(20), nullable=False)
    interval_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    due_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    due_end: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    journal_size: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    activated_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    close_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<CountPlan {self.code} status={self.status}>"

    def to_dto(self) -> CountPlan:
        """Convert ORM model to frozen domain DTO."""
        from cyclecount_kernel.domain.plan import (
            Cadence,
            CountPlan as CountPlanDTO,
            PlanStatus,
            ScopeSelector,
        )

        return CountPlanDTO(
            id=self.id,
            code=self.code,
            name=self.name,
            scope=tuple(ScopeSelector.from_dict(s) for s in self.scope),
            cadence=Cadence(self.cadence),
            interval_days=self.interval_days,
            due_start=self.due_start,
            due_end=self.due_end,
            journal_size=self.journal_size,
            status=PlanStatus(self.status),
            created_by=self.created_by,
            created_at=self.created_at,
            activated_at=self.activated_at,
            closed_at=self.closed_at,
            close_reason=self.close_reason,
        )
