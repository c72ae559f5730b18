"""
ReconciliationEngine -- turn approved journals into adjustment batches.

Responsibility:
    Writes exactly one immutable ReconciliationBatch (header + one entry
    per line) for an Approved journal and flips the journal to Reconciled
    in the same transaction.  Drains the approved-journal work queue.

Architecture position:
    Kernel > Services -- imperative shell.
    Entry and hash computation is the pure
    ``cyclecount_engines.reconciliation`` module.

Invariants enforced:
    - A batch exists iff the journal is Reconciled.
    - Exactly one batch per journal: UNIQUE(journal_id) makes a concurrent
      double insert fail; the loser returns the winner's batch.
    - ``reconcile`` is idempotent by journal id.  ``apply`` is the strict
      form.
    - Integrity faults are never auto-healed.

Failure modes:
    - NotApprovedError: journal is not Approved (and not already reconciled).
    - AlreadyReconciledError: ``apply`` on a reconciled journal.
    - ReconciliationIntegrityError: batch and journal disagree.  Logged at
      CRITICAL; the caller records the integrity-fault event.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cyclecount_engines.reconciliation import batch_hash, compute_entries
from cyclecount_kernel.domain.clock import Clock
from cyclecount_kernel.domain.events import EventType
from cyclecount_kernel.domain.journal import JournalStatus
from cyclecount_kernel.domain.reconciliation import ReconciliationBatch
from cyclecount_kernel.exceptions import (
    AlreadyReconciledError,
    NotApprovedError,
    ReconciliationIntegrityError,
)
from cyclecount_kernel.logging_config import get_logger
from cyclecount_kernel.models.journal import JournalModel
from cyclecount_kernel.models.reconciliation import (
    ReconciliationBatchModel,
    ReconciliationEntryModel,
)
from cyclecount_kernel.selectors.journal_selector import JournalSelector
from cyclecount_kernel.services.base import JournalServiceBase
from cyclecount_kernel.services.event_publisher import EventPublisher
from cyclecount_kernel.services.plan_service import CountPlanManager

logger = get_logger("services.reconciliation")


class ReconciliationEngine(JournalServiceBase):
    """Produces reconciliation batches for approved journals."""

    def __init__(
        self,
        session: Session,
        events: EventPublisher,
        plans: CountPlanManager,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._events = events
        self._plans = plans
        self._journals = JournalSelector(session)

    def get_batch(self, journal_id: UUID) -> ReconciliationBatch | None:
        return self._journals.batch_for_journal(journal_id)

    def reconcile(self, journal_id: UUID, actor_id: str | None = None) -> ReconciliationBatch:
        """
        Reconcile an Approved journal, or return its existing batch.

        Raises:
            NotApprovedError: journal is neither Approved nor Reconciled.
            ReconciliationIntegrityError: batch and journal disagree.
        """
        model = self._load_journal_for_update(journal_id)
        existing = self._batch_model(journal_id)
        if existing is not None:
            self._verify(model, existing)
            logger.info(
                "reconcile_idempotent_hit",
                extra={"journal_id": str(journal_id), "batch_id": str(existing.id)},
            )
            return existing.to_dto()
        if model.status == JournalStatus.RECONCILED.value:
            self._fault(model, None, "reconciled_without_batch")
        if model.status != JournalStatus.APPROVED.value:
            raise NotApprovedError(str(journal_id), model.status)
        return self._write_batch(model, actor_id)

    def apply(self, journal_id: UUID, actor_id: str | None = None) -> ReconciliationBatch:
        """Strict reconcile: an already-reconciled journal raises."""
        model = self._load_journal_for_update(journal_id)
        existing = self._batch_model(journal_id)
        if existing is not None:
            self._verify(model, existing)
            raise AlreadyReconciledError(str(journal_id), str(existing.id))
        return self.reconcile(journal_id, actor_id)

    def process_approved(
        self, limit: int = 50, actor_id: str | None = None
    ) -> list[ReconciliationBatch]:
        """Reconcile up to ``limit`` Approved journals, oldest activity first."""
        batches = [
            self.reconcile(journal_id, actor_id)
            for journal_id in self._journals.approved_journal_ids(limit)
        ]
        if batches:
            logger.info("approved_journals_processed", extra={"count": len(batches)})
        return batches

    # -- internals ---------------------------------------------------------

    def _batch_model(self, journal_id: UUID) -> ReconciliationBatchModel | None:
        return self.session.execute(
            select(ReconciliationBatchModel)
            .where(ReconciliationBatchModel.journal_id == journal_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _verify(self, model: JournalModel, batch: ReconciliationBatchModel) -> None:
        if model.status != JournalStatus.RECONCILED.value:
            self._fault(model, batch.id, f"batch_present_journal_{model.status}")
        if len(batch.entries) != batch.line_count:
            self._fault(model, batch.id, "entry_count_mismatch")
        entries = tuple(e.to_dto() for e in batch.entries)
        if batch_hash(model.id, entries) != batch.batch_hash:
            self._fault(model, batch.id, "batch_hash_mismatch")

    def _fault(self, model: JournalModel, batch_id: UUID | None, reason: str) -> None:
        logger.critical(
            "reconciliation_integrity_fault",
            extra={
                "journal_id": str(model.id),
                "batch_id": str(batch_id) if batch_id else None,
                "journal_status": model.status,
                "reason": reason,
            },
        )
        raise ReconciliationIntegrityError(
            str(model.id), str(batch_id) if batch_id else "none", reason
        )

    def _write_batch(self, model: JournalModel, actor_id: str | None) -> ReconciliationBatch:
        journal = model.to_dto()
        entries = compute_entries(journal_id=journal.id, lines=journal.lines)
        digest = batch_hash(journal.id, entries)
        now = self._clock.now()

        batch = ReconciliationBatchModel(
            journal_id=journal.id,
            plan_id=journal.plan_id,
            line_count=len(entries),
            batch_hash=digest,
            created_by=actor_id,
            created_at=now,
        )
        batch.entries = [
            ReconciliationEntryModel(
                line_id=e.line_id,
                sequence_number=e.sequence_number,
                location_code=e.location_code,
                item_code=e.item_code,
                expected=e.expected,
                counted=e.counted,
                delta=e.delta,
            )
            for e in entries
        ]
        try:
            with self.session.begin_nested():
                self.session.add(batch)
                self.session.flush()
        except IntegrityError:
            winner = self._batch_model(journal.id)
            if winner is None:
                raise
            logger.warning(
                "reconcile_race_lost",
                extra={"journal_id": str(journal.id), "batch_id": str(winner.id)},
            )
            return winner.to_dto()

        self._transition(model, JournalStatus.RECONCILED, "reconcile")
        self._touch(model)
        self._flush_journal(model)

        result = batch.to_dto()
        self._events.emit(
            EventType.JOURNAL_RECONCILED,
            actor_id=actor_id,
            journal_id=journal.id,
            plan_id=journal.plan_id,
            payload={
                "batch_id": result.batch_id,
                "line_count": result.line_count,
                "net_delta": result.net_delta,
                "batch_hash": digest,
            },
        )
        logger.info(
            "journal_reconciled",
            extra={
                "journal_id": str(journal.id),
                "batch_id": str(result.batch_id),
                "line_count": result.line_count,
                "net_delta": result.net_delta,
            },
        )
        self._plans.refresh_status(journal.plan_id)
        return result
