"""
cyclecount_services.engine -- Transactional facade over the cycle count kernel.

Responsibility:
    The single entrypoint callers use.  Every public operation runs in its
    own unit of work: a fresh session, a CycleCountOrchestrator, commit on
    success and rollback on any exception.  Events queued during the
    operation reach EventBus subscribers only after the commit.

Architecture position:
    Services -- outermost layer.  Owns transaction boundaries; kernel
    services only flush.

Invariants enforced:
    - No caller observes a half transition: an operation either commits
      completely or leaves no trace (state or events).
    - A lost compare-and-set surfaces as AlreadyClaimedError for claims
      and OptimisticLockError everywhere else.
    - A reconciliation integrity fault is never auto-healed.  The failed
      operation rolls back; the fault event is recorded in a separate
      transaction so the alert survives the rollback.

Failure modes:
    - Every CycleCountError subclass raised by the kernel propagates
      unchanged after rollback.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from cyclecount_config import get_active_config
from cyclecount_config.schema import CycleCountConfig
from cyclecount_engines.approval import JournalApprovalState
from cyclecount_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from cyclecount_kernel.db.immutability import register_immutability_listeners
from cyclecount_kernel.domain.approval import Actor, ApprovalDecisionRecord
from cyclecount_kernel.domain.clock import Clock, SystemClock
from cyclecount_kernel.domain.dispatch import DispatchFilters, OperatorProfile
from cyclecount_kernel.domain.events import CountEvent, EventType
from cyclecount_kernel.domain.journal import (
    CountPass,
    Evidence,
    Journal,
    JournalLine,
    JournalStatus,
    JournalSummary,
)
from cyclecount_kernel.domain.plan import Cadence, CountPlan, PlanStatus, ScopeSelector
from cyclecount_kernel.domain.reconciliation import ReconciliationBatch
from cyclecount_kernel.domain.snapshot import InventorySnapshot
from cyclecount_kernel.domain.variance import VarianceRecord
from cyclecount_kernel.exceptions import (
    AlreadyClaimedError,
    CycleCountError,
    JournalNotFoundError,
    OptimisticLockError,
    ReconciliationIntegrityError,
)
from cyclecount_kernel.logging_config import LogContext, get_logger
from cyclecount_kernel.services.event_publisher import EventBus, EventHandler, EventPublisher
from cyclecount_services.orchestrator import CycleCountOrchestrator

logger = get_logger("services.engine")


class CycleCountEngine:
    """
    Facade for the journal lifecycle and approval-escalation engine.

    Contract:
        Thread-safe as long as the session factory is: each call opens
        and closes its own session.  Returns frozen DTOs only.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        config: CycleCountConfig | None = None,
        clock: Clock | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()
        self.config = config or get_active_config()
        self.clock = clock or SystemClock()
        self.bus = bus or EventBus()

    @classmethod
    def bootstrap(
        cls,
        database_url: str,
        config: CycleCountConfig | None = None,
        clock: Clock | None = None,
        bus: EventBus | None = None,
        create_schema: bool = True,
        **engine_kwargs: Any,
    ) -> CycleCountEngine:
        """Initialize the database engine, listeners and (optionally) schema."""
        init_engine_from_url(database_url, **engine_kwargs)
        register_immutability_listeners()
        if create_schema:
            create_tables()
        return cls(get_session_factory(), config, clock, bus)

    def subscribe(self, event_type: EventType | str, handler: EventHandler) -> Callable[[], None]:
        return self.bus.subscribe(event_type, handler)

    # -- unit of work ------------------------------------------------------

    @contextmanager
    def _unit_of_work(
        self,
        operation: str,
        on_stale: Callable[[], CycleCountError] | None = None,
        **context: Any,
    ) -> Iterator[CycleCountOrchestrator]:
        session = self._session_factory()
        correlation_id = str(uuid4())
        with LogContext.bind(correlation_id=correlation_id, **context):
            try:
                yield CycleCountOrchestrator(session, self.config, self.clock, self.bus)
                session.commit()
            except StaleDataError as exc:
                session.rollback()
                logger.warning("operation_conflict", extra={"operation": operation})
                if on_stale is not None:
                    raise on_stale() from exc
                raise OptimisticLockError(
                    "Journal", str(context.get("journal_id", "unknown"))
                ) from exc
            except ReconciliationIntegrityError as exc:
                session.rollback()
                self._record_integrity_fault(exc, context.get("actor_id"))
                raise
            except Exception:
                session.rollback()
                logger.debug("operation_rolled_back", extra={"operation": operation})
                raise
            finally:
                session.close()

    def _record_integrity_fault(
        self, exc: ReconciliationIntegrityError, actor_id: str | None
    ) -> None:
        session = self._session_factory()
        try:
            journal_id = UUID(exc.journal_id)
            publisher = EventPublisher(session, self.clock, self.bus)
            publisher.emit(
                EventType.RECONCILIATION_INTEGRITY_FAULT,
                actor_id=actor_id,
                journal_id=journal_id,
                payload={
                    "batch_id": exc.batch_id,
                    "reason": exc.reason,
                },
            )
            session.commit()
        except Exception:
            session.rollback()
            logger.exception(
                "integrity_fault_event_not_recorded",
                extra={"journal_id": exc.journal_id, "batch_id": exc.batch_id},
            )
        finally:
            session.close()

    # -- plans -------------------------------------------------------------

    def create_plan(
        self,
        name: str,
        scope: tuple[ScopeSelector, ...] | list[dict[str, Any]],
        cadence: Cadence | str,
        due_start: datetime,
        due_end: datetime,
        actor: Actor,
        journal_size: int | None = None,
        interval_days: int | None = None,
        code: str | None = None,
    ) -> CountPlan:
        with self._unit_of_work("create_plan", actor_id=actor.actor_id) as cc:
            return cc.plans.create_plan(
                name, scope, cadence, due_start, due_end, actor,
                journal_size=journal_size, interval_days=interval_days, code=code,
            )

    def update_plan(self, plan_id: UUID, actor: Actor, **changes: Any) -> CountPlan:
        with self._unit_of_work("update_plan", actor_id=actor.actor_id, plan_id=plan_id) as cc:
            return cc.plans.update_plan(plan_id, actor, **changes)

    def activate_plan(self, plan_id: UUID, actor: Actor) -> CountPlan:
        with self._unit_of_work("activate_plan", actor_id=actor.actor_id, plan_id=plan_id) as cc:
            return cc.plans.activate_plan(plan_id, actor)

    def close_plan(self, plan_id: UUID, actor: Actor, reason: str) -> CountPlan:
        with self._unit_of_work("close_plan", actor_id=actor.actor_id, plan_id=plan_id) as cc:
            return cc.plans.close_plan(plan_id, actor, reason)

    def refresh_plan_status(self, plan_id: UUID) -> CountPlan:
        with self._unit_of_work("refresh_plan_status", plan_id=plan_id) as cc:
            return cc.plans.refresh_status(plan_id)

    def get_plan(self, plan_id: UUID) -> CountPlan:
        with self._unit_of_work("get_plan", plan_id=plan_id) as cc:
            return cc.plans.get_plan(plan_id)

    def list_plans(self, status: PlanStatus | None = None) -> list[CountPlan]:
        with self._unit_of_work("list_plans") as cc:
            return cc.plans.list_plans(status)

    def generate_journals(
        self, plan_id: UUID, snapshot: InventorySnapshot, actor_id: str = "system"
    ) -> tuple[Journal, ...]:
        with self._unit_of_work("generate_journals", actor_id=actor_id, plan_id=plan_id) as cc:
            return cc.factory.generate_journals(plan_id, snapshot, actor_id)

    # -- dispatch ----------------------------------------------------------

    def claim(self, journal_id: UUID, operator: OperatorProfile) -> Journal:
        with self._unit_of_work(
            "claim",
            on_stale=lambda: AlreadyClaimedError(str(journal_id)),
            operator_id=operator.operator_id,
            journal_id=journal_id,
        ) as cc:
            return cc.dispatch.claim(journal_id, operator)

    def release(self, journal_id: UUID, operator_id: str) -> Journal:
        with self._unit_of_work("release", operator_id=operator_id, journal_id=journal_id) as cc:
            return cc.dispatch.release(journal_id, operator_id)

    def reassign(self, journal_id: UUID, operator: OperatorProfile, actor: Actor) -> Journal:
        with self._unit_of_work(
            "reassign",
            actor_id=actor.actor_id,
            operator_id=operator.operator_id,
            journal_id=journal_id,
        ) as cc:
            return cc.dispatch.reassign(journal_id, operator, actor)

    def renew_lease(self, journal_id: UUID, operator_id: str) -> Journal:
        with self._unit_of_work("renew_lease", operator_id=operator_id, journal_id=journal_id) as cc:
            return cc.dispatch.renew_lease(journal_id, operator_id)

    def list_eligible(
        self, operator: OperatorProfile, filters: DispatchFilters | None = None
    ) -> tuple[JournalSummary, ...]:
        with self._unit_of_work("list_eligible", operator_id=operator.operator_id) as cc:
            return cc.dispatch.list_eligible(operator, filters)

    def sweep_expired_leases(self) -> list[UUID]:
        with self._unit_of_work("sweep_expired_leases") as cc:
            return cc.dispatch.sweep_expired_leases()

    # -- counting ----------------------------------------------------------

    def record_count(
        self,
        line_id: UUID,
        operator_id: str,
        quantity: Any,
        evidence: Evidence | dict[str, Any] | None = None,
    ) -> JournalLine:
        with self._unit_of_work("record_count", operator_id=operator_id) as cc:
            return cc.counting.record_count(line_id, operator_id, quantity, evidence)

    def skip_line(self, line_id: UUID, operator_id: str, reason: str) -> JournalLine:
        with self._unit_of_work("skip_line", operator_id=operator_id) as cc:
            return cc.counting.skip_line(line_id, operator_id, reason)

    def submit(self, journal_id: UUID, operator_id: str) -> Journal:
        with self._unit_of_work("submit", operator_id=operator_id, journal_id=journal_id) as cc:
            return cc.counting.submit(journal_id, operator_id)

    # -- approval ----------------------------------------------------------

    def begin_review(self, journal_id: UUID, actor: Actor) -> Journal:
        with self._unit_of_work("begin_review", actor_id=actor.actor_id, journal_id=journal_id) as cc:
            return cc.approvals.begin_review(journal_id, actor)

    def approve_lines(
        self, journal_id: UUID, line_ids: tuple[UUID, ...] | list[UUID], actor: Actor, comment: str = ""
    ) -> Journal:
        with self._unit_of_work("approve_lines", actor_id=actor.actor_id, journal_id=journal_id) as cc:
            return cc.approvals.approve_lines(journal_id, line_ids, actor, comment)

    def reject(
        self, journal_id: UUID, line_ids: tuple[UUID, ...] | list[UUID], actor: Actor, comment: str = ""
    ) -> Journal:
        with self._unit_of_work("reject", actor_id=actor.actor_id, journal_id=journal_id) as cc:
            return cc.approvals.reject(journal_id, line_ids, actor, comment)

    def approve(self, journal_id: UUID, actor: Actor, comment: str = "") -> Journal:
        with self._unit_of_work("approve", actor_id=actor.actor_id, journal_id=journal_id) as cc:
            return cc.approvals.approve(journal_id, actor, comment)

    def escalate(
        self,
        journal_id: UUID,
        actor: Actor,
        comment: str = "",
        line_ids: tuple[UUID, ...] = (),
    ) -> Journal:
        with self._unit_of_work("escalate", actor_id=actor.actor_id, journal_id=journal_id) as cc:
            return cc.approvals.escalate(journal_id, actor, comment, line_ids)

    def void(self, journal_id: UUID, actor: Actor, comment: str = "") -> Journal:
        with self._unit_of_work("void", actor_id=actor.actor_id, journal_id=journal_id) as cc:
            return cc.approvals.void(journal_id, actor, comment)

    def decision_log(self, journal_id: UUID) -> list[ApprovalDecisionRecord]:
        with self._unit_of_work("decision_log", journal_id=journal_id) as cc:
            return cc.approvals.decision_log(journal_id)

    def approval_state(self, journal_id: UUID) -> JournalApprovalState:
        with self._unit_of_work("approval_state", journal_id=journal_id) as cc:
            return cc.approvals.approval_state(journal_id)

    # -- reconciliation ----------------------------------------------------

    def reconcile(self, journal_id: UUID, actor_id: str | None = None) -> ReconciliationBatch:
        with self._unit_of_work("reconcile", actor_id=actor_id, journal_id=journal_id) as cc:
            return cc.reconciliation.reconcile(journal_id, actor_id)

    def apply_reconciliation(
        self, journal_id: UUID, actor_id: str | None = None
    ) -> ReconciliationBatch:
        with self._unit_of_work("apply_reconciliation", actor_id=actor_id, journal_id=journal_id) as cc:
            return cc.reconciliation.apply(journal_id, actor_id)

    def process_approved(
        self, limit: int = 50, actor_id: str | None = None
    ) -> list[ReconciliationBatch]:
        """
        Drain the approved-journal queue, one transaction per journal.

        A journal whose reconciliation hits an integrity fault is left as
        is (the fault is logged and recorded as an event) and the drain
        moves on to the next journal.
        """
        with self._unit_of_work("process_approved.scan") as cc:
            journal_ids = cc.journals.approved_journal_ids(limit)

        batches: list[ReconciliationBatch] = []
        for journal_id in journal_ids:
            try:
                batches.append(self.reconcile(journal_id, actor_id))
            except ReconciliationIntegrityError as exc:
                logger.error(
                    "process_approved_fault_skipped",
                    extra={"journal_id": str(journal_id), "reason": exc.reason},
                )
        logger.info(
            "approved_journals_drained",
            extra={"scanned": len(journal_ids), "reconciled": len(batches)},
        )
        return batches

    def get_batch(self, journal_id: UUID) -> ReconciliationBatch | None:
        with self._unit_of_work("get_batch", journal_id=journal_id) as cc:
            return cc.reconciliation.get_batch(journal_id)

    # -- reads -------------------------------------------------------------

    def get_journal(self, journal_id: UUID) -> Journal:
        with self._unit_of_work("get_journal", journal_id=journal_id) as cc:
            journal = cc.journals.get_journal(journal_id)
        if journal is None:
            raise JournalNotFoundError(str(journal_id))
        return journal

    def list_journals(
        self,
        plan_id: UUID | None = None,
        statuses: tuple[JournalStatus, ...] | None = None,
    ) -> list[Journal]:
        with self._unit_of_work("list_journals", plan_id=plan_id) as cc:
            return cc.journals.list_journals(plan_id, statuses)

    def variance_records(
        self, journal_id: UUID, current_only: bool = True
    ) -> list[VarianceRecord]:
        with self._unit_of_work("variance_records", journal_id=journal_id) as cc:
            return cc.journals.variance_records(journal_id, current_only)

    def count_passes(self, line_id: UUID) -> list[CountPass]:
        with self._unit_of_work("count_passes") as cc:
            return cc.journals.count_passes(line_id)

    def events(
        self,
        journal_id: UUID | None = None,
        event_type: EventType | None = None,
        plan_id: UUID | None = None,
    ) -> list[CountEvent]:
        with self._unit_of_work("events", journal_id=journal_id, plan_id=plan_id) as cc:
            return cc.journals.events(journal_id, event_type, plan_id)
