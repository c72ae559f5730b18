"""
Module: cyclecount_kernel.models.event
Responsibility: Append-only outbox of domain events.

Events are written in the same transaction as the transition they
describe, so a rolled-back transition never leaves an event behind.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from cyclecount_kernel.db.base import Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from cyclecount_kernel.domain.events import CountEvent


class CountEventModel(Base):
    __tablename__ = "count_events"

    __table_args__ = (
        Index("ix_count_events_journal", "journal_id", "occurred_at"),
        Index("ix_count_events_type", "event_type"),
    )

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    journal_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    plan_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<CountEvent {self.event_type} journal={self.journal_id}>"

    def to_dto(self) -> CountEvent:
        from cyclecount_kernel.domain.events import CountEvent as CountEventDTO, EventType

        return CountEventDTO(
            event_id=self.id,
            event_type=EventType(self.event_type),
            journal_id=self.journal_id,
            plan_id=self.plan_id,
            actor_id=self.actor_id,
            payload=dict(self.payload or {}),
            occurred_at=self.occurred_at,
        )
