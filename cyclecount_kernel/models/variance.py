"""
Module: cyclecount_kernel.models.variance
Responsibility: ORM persistence for per-pass variance records.

Invariants enforced:
    - UNIQUE(line_id, pass_number): one record per line pass.  Recomputing
      the same pass replaces the row in place; earlier passes are history.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from cyclecount_kernel.db.base import Base, ExactDecimal, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from cyclecount_kernel.domain.variance import VarianceRecord


class VarianceRecordModel(Base):
    __tablename__ = "variance_records"

    __table_args__ = (
        UniqueConstraint("line_id", "pass_number", name="uq_variance_records_line_pass"),
        CheckConstraint(
            "severity IN ('none', 'minor', 'major', 'critical')",
            name="ck_variance_records_valid_severity",
        ),
        Index("ix_variance_records_journal", "journal_id"),
    )

    journal_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journals.id"), nullable=False,
    )
    line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journal_lines.id"), nullable=False,
    )
    pass_number: Mapped[int] = mapped_column(Integer, nullable=False)
    expected: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False)
    counted: Mapped[Decimal | None] = mapped_column(ExactDecimal(), nullable=True)
    delta: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False)
    abs_delta: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False)
    percent_delta: Mapped[Decimal] = mapped_column(ExactDecimal(24, 4), nullable=False)
    value_delta: Mapped[Decimal | None] = mapped_column(ExactDecimal(38, 4), nullable=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    required_tier: Mapped[int] = mapped_column(Integer, nullable=False)
    matched_rule: Mapped[str | None] = mapped_column(String(100), nullable=True)
    skipped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    computed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<VarianceRecord line={self.line_id} pass={self.pass_number} "
            f"severity={self.severity}>"
        )

    def to_dto(self) -> VarianceRecord:
        from cyclecount_kernel.domain.approval import ApprovalTier
        from cyclecount_kernel.domain.variance import (
            Severity,
            VarianceRecord as VarianceRecordDTO,
        )

        return VarianceRecordDTO(
            id=self.id,
            journal_id=self.journal_id,
            line_id=self.line_id,
            pass_number=self.pass_number,
            expected=self.expected,
            counted=self.counted,
            delta=self.delta,
            abs_delta=self.abs_delta,
            percent_delta=self.percent_delta,
            value_delta=self.value_delta,
            severity=Severity(self.severity),
            required_tier=ApprovalTier(self.required_tier),
            matched_rule=self.matched_rule,
            skipped=self.skipped,
            computed_at=self.computed_at,
        )
