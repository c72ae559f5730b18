"""
Module: cyclecount_kernel.models.journal
Responsibility: ORM persistence for journals, journal lines and frozen
    count passes.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Journal.version is a SQLAlchemy version_id_col: every UPDATE is a
      compare-and-set on (id, version) and raises StaleDataError when a
      concurrent writer got there first.
    - A journal has at most one claimant (single assigned_operator column).
    - UNIQUE(journal_id, sequence_number) on lines.
    - UNIQUE(line_id, pass_number) on count passes: a pass is frozen once.
    - JournalLine.expected_quantity is write-once (db/immutability.py).
    - CountPass rows are append-only (db/immutability.py).

Failure modes:
    - StaleDataError on a lost compare-and-set (mapped to AlreadyClaimedError
      or OptimisticLockError by the services).
    - IntegrityError on a duplicate (line, pass).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cyclecount_kernel.db.base import Base, ExactDecimal, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from cyclecount_kernel.domain.journal import (
        CountPass,
        Journal,
        JournalLine,
        JournalSummary,
    )


class JournalModel(Base):
    """Persistent journal: one target location, one claimant at a time."""

    __tablename__ = "journals"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'assigned', 'in_progress', 'submitted', "
            "'under_review', 'approved', 'rejected', 'reconciled')",
            name="ck_journals_valid_status",
        ),
        CheckConstraint(
            "(assigned_operator IS NULL) OR (status IN ('assigned', 'in_progress'))",
            name="ck_journals_claimant_only_when_held",
        ),
        Index("ix_journals_plan", "plan_id"),
        Index("ix_journals_status_warehouse_zone", "status", "warehouse", "zone"),
        Index("ix_journals_assigned_operator", "assigned_operator"),
    )

    journal_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    plan_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("count_plans.id"), nullable=False,
    )
    location_code: Mapped[str] = mapped_column(String(100), nullable=False)
    warehouse: Mapped[str] = mapped_column(String(100), nullable=False)
    zone: Mapped[str | None] = mapped_column(String(100), nullable=True)
    required_skills: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    shift: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    assigned_operator: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_operator: Mapped[str | None] = mapped_column(String(100), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    review_round: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    required_tier: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    lines: Mapped[list["JournalLineModel"]] = relationship(
        "JournalLineModel",
        back_populates="journal",
        order_by="JournalLineModel.sequence_number",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Journal {self.journal_number} status={self.status} v{self.version}>"

    def to_dto(self) -> Journal:
        """Convert ORM model to frozen domain DTO (lines included)."""
        from cyclecount_kernel.domain.approval import ApprovalTier
        from cyclecount_kernel.domain.journal import (
            Journal as JournalDTO,
            JournalStatus,
        )

        return JournalDTO(
            id=self.id,
            journal_number=self.journal_number,
            plan_id=self.plan_id,
            location_code=self.location_code,
            warehouse=self.warehouse,
            zone=self.zone,
            required_skills=tuple(self.required_skills or ()),
            shift=self.shift,
            status=JournalStatus(self.status),
            assigned_operator=self.assigned_operator,
            last_operator=self.last_operator,
            claimed_at=self.claimed_at,
            lease_expires_at=self.lease_expires_at,
            review_round=self.review_round,
            required_tier=(
                ApprovalTier(self.required_tier) if self.required_tier is not None else None
            ),
            version=self.version,
            created_at=self.created_at,
            lines=tuple(line.to_dto() for line in self.lines),
        )

    def to_summary(self) -> JournalSummary:
        from cyclecount_kernel.domain.journal import JournalStatus, JournalSummary

        return JournalSummary(
            id=self.id,
            journal_number=self.journal_number,
            plan_id=self.plan_id,
            location_code=self.location_code,
            warehouse=self.warehouse,
            zone=self.zone,
            status=JournalStatus(self.status),
            line_count=len(self.lines),
            required_skills=tuple(self.required_skills or ()),
            shift=self.shift,
            assigned_operator=self.assigned_operator,
            lease_expires_at=self.lease_expires_at,
        )


class JournalLineModel(Base):
    """Persistent journal line.  Expected quantity is frozen at creation."""

    __tablename__ = "journal_lines"

    __table_args__ = (
        UniqueConstraint("journal_id", "sequence_number", name="uq_journal_lines_sequence"),
        CheckConstraint(
            "status IN ('uncounted', 'counted', 'recount_requested', 'skipped')",
            name="ck_journal_lines_valid_status",
        ),
        CheckConstraint("expected_quantity >= 0", name="ck_journal_lines_expected_nonneg"),
        CheckConstraint(
            "counted_quantity IS NULL OR counted_quantity >= 0",
            name="ck_journal_lines_counted_nonneg",
        ),
        CheckConstraint("pass_number >= 1", name="ck_journal_lines_pass_positive"),
        Index("ix_journal_lines_journal", "journal_id"),
    )

    journal_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journals.id"), nullable=False,
    )
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    location_code: Mapped[str] = mapped_column(String(100), nullable=False)
    item_code: Mapped[str] = mapped_column(String(100), nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(ExactDecimal(), nullable=True)
    serial_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expected_quantity: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False)
    counted_quantity: Mapped[Decimal | None] = mapped_column(ExactDecimal(), nullable=True)
    evidence: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="uncounted")
    skip_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    pass_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    counted_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    counted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    journal: Mapped["JournalModel"] = relationship("JournalModel", back_populates="lines")

    def __repr__(self) -> str:
        return (
            f"<JournalLine #{self.sequence_number} {self.item_code}@{self.location_code} "
            f"status={self.status} pass={self.pass_number}>"
        )

    def to_dto(self) -> JournalLine:
        from cyclecount_kernel.domain.journal import (
            Evidence,
            JournalLine as JournalLineDTO,
            LineStatus,
        )

        return JournalLineDTO(
            id=self.id,
            journal_id=self.journal_id,
            sequence_number=self.sequence_number,
            location_code=self.location_code,
            item_code=self.item_code,
            unit_cost=self.unit_cost,
            serial_required=self.serial_required,
            expected_quantity=self.expected_quantity,
            counted_quantity=self.counted_quantity,
            evidence=Evidence.from_dict(self.evidence),
            status=LineStatus(self.status),
            skip_reason=self.skip_reason,
            pass_number=self.pass_number,
            counted_by=self.counted_by,
            counted_at=self.counted_at,
        )


class CountPassModel(Base):
    """Frozen counting pass of one line. Append-only."""

    __tablename__ = "count_passes"

    __table_args__ = (
        UniqueConstraint("line_id", "pass_number", name="uq_count_passes_line_pass"),
        Index("ix_count_passes_journal", "journal_id"),
    )

    line_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journal_lines.id"), nullable=False,
    )
    journal_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journals.id"), nullable=False,
    )
    pass_number: Mapped[int] = mapped_column(Integer, nullable=False)
    counted_quantity: Mapped[Decimal | None] = mapped_column(ExactDecimal(), nullable=True)
    skipped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    skip_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    counted_by: Mapped[str] = mapped_column(String(100), nullable=False)
    counted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    frozen_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_dto(self) -> CountPass:
        from cyclecount_kernel.domain.journal import CountPass as CountPassDTO, Evidence

        return CountPassDTO(
            id=self.id,
            line_id=self.line_id,
            journal_id=self.journal_id,
            pass_number=self.pass_number,
            counted_quantity=self.counted_quantity,
            skipped=self.skipped,
            skip_reason=self.skip_reason,
            evidence=Evidence.from_dict(self.evidence),
            counted_by=self.counted_by,
            counted_at=self.counted_at,
            frozen_at=self.frozen_at,
        )
