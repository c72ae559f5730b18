"""
cyclecount_services.orchestrator -- Central DI container for kernel services.

Responsibility:
    Creates every kernel service exactly once per session and wires them
    together.  No service creates other services internally.

Architecture position:
    Services -- orchestration over engines + kernel.  The only place where
    kernel services are constructed and composed.

Invariants enforced:
    - Single-instance lifecycle: one service of each kind per session.
    - DI transparency: all service wiring is visible in ``__init__``.
    - All services share the same Session, Clock, config and EventBus.

Usage:
    from cyclecount_services.orchestrator import CycleCountOrchestrator

    orchestrator = CycleCountOrchestrator(session, config, clock=clock, bus=bus)
    orchestrator.dispatch.claim(journal_id, operator)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from cyclecount_config.schema import CycleCountConfig
from cyclecount_kernel.domain.clock import Clock, SystemClock
from cyclecount_kernel.selectors.journal_selector import JournalSelector
from cyclecount_kernel.services.approval_workflow import ApprovalWorkflow
from cyclecount_kernel.services.count_session import CountSession
from cyclecount_kernel.services.dispatch_pool import DispatchPool
from cyclecount_kernel.services.event_publisher import EventBus, EventPublisher
from cyclecount_kernel.services.journal_factory import JournalFactory
from cyclecount_kernel.services.plan_service import CountPlanManager
from cyclecount_kernel.services.reconciliation_service import ReconciliationEngine
from cyclecount_kernel.services.variance_service import VarianceService


class CycleCountOrchestrator:
    """Central factory for kernel services.

    Contract:
        Receives a Session and a CycleCountConfig, plus an optional Clock
        and EventBus.  Constructs every kernel service once, in dependency
        order, and exposes them as public attributes.

    Non-goals:
        - Does NOT manage transaction boundaries (caller's responsibility).
        - Does NOT own the Session lifecycle (no commit/rollback).
    """

    def __init__(
        self,
        session: Session,
        config: CycleCountConfig,
        clock: Clock | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self.config = config

        # Foundational
        self.events = EventPublisher(session, self._clock, bus)
        self.journals = JournalSelector(session)
        self.variance = VarianceService(session, config, self._clock)

        # Lifecycle, leaf to root
        self.plans = CountPlanManager(session, config, self.events, self._clock)
        self.factory = JournalFactory(session, self.events, self._clock)
        self.dispatch = DispatchPool(session, config, self.events, self._clock)
        self.counting = CountSession(
            session, config, self.events, self.variance, self._clock,
        )
        self.approvals = ApprovalWorkflow(
            session, config, self.events, self.plans, self._clock,
        )
        self.reconciliation = ReconciliationEngine(
            session, self.events, self.plans, self._clock,
        )

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock
