"""
Module: cyclecount_kernel.models.reconciliation
Responsibility: ORM persistence for reconciliation batches and entries.

Invariants enforced:
    - UNIQUE(journal_id) on batches: at most one batch per journal.  A
      concurrent second insert fails with IntegrityError.
    - UNIQUE(batch_id, line_id) on entries.
    - Batches and entries are immutable once written (db/immutability.py).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cyclecount_kernel.db.base import Base, ExactDecimal, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from cyclecount_kernel.domain.reconciliation import (
        ReconciliationBatch,
        ReconciliationEntry,
    )


class ReconciliationBatchModel(Base):
    __tablename__ = "reconciliation_batches"

    __table_args__ = (
        UniqueConstraint("journal_id", name="uq_reconciliation_batches_journal"),
    )

    journal_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journals.id"), nullable=False,
    )
    plan_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("count_plans.id"), nullable=False,
    )
    line_count: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    entries: Mapped[list["ReconciliationEntryModel"]] = relationship(
        "ReconciliationEntryModel",
        back_populates="batch",
        order_by="ReconciliationEntryModel.sequence_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<ReconciliationBatch {self.id} journal={self.journal_id}>"

    def to_dto(self) -> ReconciliationBatch:
        from cyclecount_kernel.domain.reconciliation import (
            ReconciliationBatch as BatchDTO,
        )

        return BatchDTO(
            batch_id=self.id,
            journal_id=self.journal_id,
            plan_id=self.plan_id,
            line_count=self.line_count,
            batch_hash=self.batch_hash,
            created_by=self.created_by,
            created_at=self.created_at,
            entries=tuple(e.to_dto() for e in self.entries),
        )


class ReconciliationEntryModel(Base):
    __tablename__ = "reconciliation_entries"

    __table_args__ = (
        UniqueConstraint("batch_id", "line_id", name="uq_reconciliation_entries_line"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("reconciliation_batches.id"), nullable=False,
    )
    line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journal_lines.id"), nullable=False,
    )
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    location_code: Mapped[str] = mapped_column(String(100), nullable=False)
    item_code: Mapped[str] = mapped_column(String(100), nullable=False)
    expected: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False)
    counted: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False)
    delta: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False)

    batch: Mapped["ReconciliationBatchModel"] = relationship(
        "ReconciliationBatchModel", back_populates="entries",
    )

    def to_dto(self) -> ReconciliationEntry:
        from cyclecount_kernel.domain.reconciliation import (
            ReconciliationEntry as EntryDTO,
        )

        return EntryDTO(
            line_id=self.line_id,
            sequence_number=self.sequence_number,
            location_code=self.location_code,
            item_code=self.item_code,
            expected=self.expected,
            counted=self.counted,
            delta=self.delta,
        )
