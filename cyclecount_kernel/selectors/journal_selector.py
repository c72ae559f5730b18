"""
Module: cyclecount_kernel.selectors.journal_selector
Responsibility: Read-only access to journals, lines, count passes, variance
    records, the decision log, reconciliation batches and the event outbox.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only; returns frozen DTOs.
    - Journals order by journal_number, lines by sequence_number and
      decisions by decision_seq, so every listing is deterministic.

Failure modes:
    - Returns None or an empty list on absence; never raises for missing
      rows.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select

from cyclecount_kernel.domain.approval import ApprovalDecisionRecord
from cyclecount_kernel.domain.events import CountEvent, EventType
from cyclecount_kernel.domain.journal import (
    CountPass,
    Journal,
    JournalStatus,
    JournalSummary,
)
from cyclecount_kernel.domain.reconciliation import ReconciliationBatch
from cyclecount_kernel.domain.variance import VarianceRecord
from cyclecount_kernel.models.approval import ApprovalDecisionModel
from cyclecount_kernel.models.event import CountEventModel
from cyclecount_kernel.models.journal import (
    CountPassModel,
    JournalLineModel,
    JournalModel,
)
from cyclecount_kernel.models.reconciliation import ReconciliationBatchModel
from cyclecount_kernel.models.variance import VarianceRecordModel
from cyclecount_kernel.selectors.base import BaseSelector


class JournalSelector(BaseSelector):
    """Query side for journals and everything hanging off them."""

    def get_journal(self, journal_id: UUID) -> Journal | None:
        model = self.session.get(JournalModel, journal_id)
        return model.to_dto() if model is not None else None

    def get_journal_by_number(self, journal_number: str) -> Journal | None:
        model = self.session.execute(
            select(JournalModel).where(JournalModel.journal_number == journal_number)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_journals(
        self,
        plan_id: UUID | None = None,
        statuses: Iterable[JournalStatus] | None = None,
    ) -> list[Journal]:
        stmt = select(JournalModel).order_by(JournalModel.journal_number)
        if plan_id is not None:
            stmt = stmt.where(JournalModel.plan_id == plan_id)
        if statuses is not None:
            stmt = stmt.where(JournalModel.status.in_([s.value for s in statuses]))
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def summaries(
        self,
        statuses: Iterable[JournalStatus],
        warehouse: str | None = None,
        zone: str | None = None,
        plan_id: UUID | None = None,
    ) -> list[JournalSummary]:
        stmt = (
            select(JournalModel)
            .where(JournalModel.status.in_([s.value for s in statuses]))
            .order_by(JournalModel.journal_number)
        )
        if warehouse is not None:
            stmt = stmt.where(JournalModel.warehouse == warehouse)
        if zone is not None:
            stmt = stmt.where(JournalModel.zone == zone)
        if plan_id is not None:
            stmt = stmt.where(JournalModel.plan_id == plan_id)
        return [m.to_summary() for m in self.session.execute(stmt).scalars()]

    def journal_statuses_for_plan(self, plan_id: UUID) -> list[JournalStatus]:
        rows = self.session.execute(
            select(JournalModel.status).where(JournalModel.plan_id == plan_id)
        ).scalars()
        return [JournalStatus(s) for s in rows]

    def journal_id_for_line(self, line_id: UUID) -> UUID | None:
        return self.session.execute(
            select(JournalLineModel.journal_id).where(JournalLineModel.id == line_id)
        ).scalar_one_or_none()

    def frozen_passes(self, journal_id: UUID) -> set[tuple[UUID, int]]:
        """(line_id, pass_number) pairs already frozen for this journal."""
        rows = self.session.execute(
            select(CountPassModel.line_id, CountPassModel.pass_number).where(
                CountPassModel.journal_id == journal_id
            )
        ).all()
        return {(line_id, pass_number) for line_id, pass_number in rows}

    def count_passes(self, line_id: UUID) -> list[CountPass]:
        stmt = (
            select(CountPassModel)
            .where(CountPassModel.line_id == line_id)
            .order_by(CountPassModel.pass_number)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def variance_records(
        self, journal_id: UUID, current_only: bool = True
    ) -> list[VarianceRecord]:
        """Variance records of a journal; by default only each line's current pass."""
        stmt = (
            select(VarianceRecordModel, JournalLineModel.pass_number, JournalLineModel.sequence_number)
            .join(JournalLineModel, JournalLineModel.id == VarianceRecordModel.line_id)
            .where(VarianceRecordModel.journal_id == journal_id)
            .order_by(JournalLineModel.sequence_number, VarianceRecordModel.pass_number)
        )
        records = []
        for record, current_pass, _seq in self.session.execute(stmt).all():
            if current_only and record.pass_number != current_pass:
                continue
            records.append(record.to_dto())
        return records

    def decisions(self, journal_id: UUID) -> list[ApprovalDecisionRecord]:
        stmt = (
            select(ApprovalDecisionModel)
            .where(ApprovalDecisionModel.journal_id == journal_id)
            .order_by(ApprovalDecisionModel.decision_seq)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def batch_for_journal(self, journal_id: UUID) -> ReconciliationBatch | None:
        model = self.session.execute(
            select(ReconciliationBatchModel).where(
                ReconciliationBatchModel.journal_id == journal_id
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def approved_journal_ids(self, limit: int = 50) -> list[UUID]:
        stmt = (
            select(JournalModel.id)
            .where(JournalModel.status == JournalStatus.APPROVED.value)
            .order_by(JournalModel.last_activity_at, JournalModel.journal_number)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())

    def events(
        self,
        journal_id: UUID | None = None,
        event_type: EventType | None = None,
        plan_id: UUID | None = None,
    ) -> list[CountEvent]:
        stmt = select(CountEventModel).order_by(CountEventModel.occurred_at)
        if journal_id is not None:
            stmt = stmt.where(CountEventModel.journal_id == journal_id)
        if plan_id is not None:
            stmt = stmt.where(CountEventModel.plan_id == plan_id)
        if event_type is not None:
            stmt = stmt.where(CountEventModel.event_type == event_type.value)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]
