"""
BaseService -- abstract base for all kernel services.

Responsibility:
    The common constructor and session-handling contract for every
    service in the kernel layer, plus the journal locking helpers shared
    by every service that mutates a journal.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The caller
      (CycleCountEngine or a test harness) owns commit/rollback.
    - Per-journal serialization: every mutation loads the journal row with
      SELECT ... FOR UPDATE and writes through the version_id_col
      compare-and-set.
    - Status changes go through ``_transition`` which enforces
      ``JOURNAL_TRANSITIONS``.

Failure modes:
    - JournalNotFoundError for an unknown journal id.
    - InvalidTransitionError for a transition not in the table.
    - OptimisticLockError when the compare-and-set loses.
"""

from __future__ import annotations

from abc import ABC
from collections.abc import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from cyclecount_kernel.domain.clock import Clock, SystemClock
from cyclecount_kernel.domain.journal import (
    OPEN_LINE_STATUSES,
    JournalStatus,
    LineStatus,
    can_transition,
)
from cyclecount_kernel.exceptions import (
    CycleCountError,
    InvalidTransitionError,
    JournalNotFoundError,
    OptimisticLockError,
)
from cyclecount_kernel.models.journal import JournalLineModel, JournalModel
from cyclecount_kernel.selectors.journal_selector import JournalSelector


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()


class JournalServiceBase(BaseService):
    """Base for services that lock and mutate journals."""

    def _load_journal_for_update(self, journal_id: UUID) -> JournalModel:
        stmt = (
            select(JournalModel)
            .where(JournalModel.id == journal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise JournalNotFoundError(str(journal_id))
        return model

    def _transition(self, model: JournalModel, to_status: JournalStatus, action: str) -> None:
        current = JournalStatus(model.status)
        if not can_transition(current, to_status):
            raise InvalidTransitionError(str(model.id), current.value, action)
        model.status = to_status.value

    def _touch(self, model: JournalModel) -> None:
        """Bump the journal row so the version check serializes line-level writes."""
        model.last_activity_at = self._clock.now()

    def _flush_journal(
        self,
        model: JournalModel,
        on_conflict: Callable[[], CycleCountError] | None = None,
    ) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            if on_conflict is not None:
                raise on_conflict() from exc
            raise OptimisticLockError("Journal", str(model.id)) from exc

    def _reset_line(self, line: JournalLineModel) -> None:
        line.status = (
            LineStatus.UNCOUNTED.value if line.pass_number == 1
            else LineStatus.RECOUNT_REQUESTED.value
        )
        line.counted_quantity = None
        line.evidence = {}
        line.skip_reason = None
        line.counted_by = None
        line.counted_at = None

    def _discard_pending_counts(self, model: JournalModel) -> int:
        """Reset lines counted in the open pass.  Frozen passes are kept."""
        frozen = JournalSelector(self.session).frozen_passes(model.id)
        discarded = 0
        for line in model.lines:
            if (line.id, line.pass_number) in frozen:
                continue
            if LineStatus(line.status) in OPEN_LINE_STATUSES:
                continue
            self._reset_line(line)
            discarded += 1
        return discarded
