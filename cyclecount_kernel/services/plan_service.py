"""
CountPlanManager -- count plan lifecycle.

Responsibility:
    Creates, edits, activates and closes count plans, and performs the lazy
    auto-close check that runs after every reconciliation.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by CycleCountEngine; consumed by JournalFactory (plan must be
    Active) and ReconciliationEngine (refresh_status after each batch).

Invariants enforced:
    - Only Draft plans can be edited (PlanImmutableError otherwise).  The
      ORM listener in db/immutability.py backs this up for any write that
      bypasses the service.
    - Status changes follow ``PLAN_TRANSITIONS``.
    - due_end > due_start, a non-empty scope of non-empty selectors and a
      positive journal size.
    - Plan creation and manual close require ``plan_authority_tier``.

Failure modes:
    - PlanNotFoundError, InvalidPlanError, InvalidPlanTransitionError,
      PlanImmutableError, InsufficientAuthorityError.

Audit relevance:
    plan.created, plan.activated and plan.closed events are written in the
    same transaction as the status change.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from cyclecount_kernel.domain.approval import Actor, require_authority
from cyclecount_kernel.domain.clock import Clock
from cyclecount_kernel.domain.events import EventType
from cyclecount_kernel.domain.journal import TERMINAL_JOURNAL_STATUSES
from cyclecount_kernel.domain.plan import (
    PLAN_TRANSITIONS,
    Cadence,
    CountPlan,
    PlanStatus,
    ScopeSelector,
)
from cyclecount_kernel.exceptions import (
    InvalidPlanError,
    InvalidPlanTransitionError,
    PlanImmutableError,
    PlanNotFoundError,
)
from cyclecount_kernel.logging_config import get_logger
from cyclecount_kernel.models.plan import CountPlanModel
from cyclecount_kernel.selectors.journal_selector import JournalSelector
from cyclecount_kernel.services.base import BaseService
from cyclecount_kernel.services.event_publisher import EventPublisher

if TYPE_CHECKING:
    from cyclecount_config.schema import CycleCountConfig

logger = get_logger("services.plan")

SYSTEM_ACTOR = "system"

_EDITABLE_FIELDS = frozenset({
    "name",
    "scope",
    "cadence",
    "interval_days",
    "due_start",
    "due_end",
    "journal_size",
})


def _coerce_scope(scope: Iterable[ScopeSelector | dict[str, Any]]) -> tuple[ScopeSelector, ...]:
    selectors = tuple(
        s if isinstance(s, ScopeSelector) else ScopeSelector.from_dict(s) for s in scope
    )
    if not selectors:
        raise InvalidPlanError("scope must contain at least one selector")
    for selector in selectors:
        if selector.is_empty:
            raise InvalidPlanError("scope selectors must set at least one field")
    return selectors


def _coerce_cadence(cadence: Cadence | str) -> Cadence:
    try:
        return Cadence(cadence)
    except ValueError:
        raise InvalidPlanError(f"unknown cadence {cadence!r}") from None


def _validate_window(due_start: datetime, due_end: datetime) -> None:
    if due_start.tzinfo is None or due_end.tzinfo is None:
        raise InvalidPlanError("due window must be timezone-aware")
    if due_end <= due_start:
        raise InvalidPlanError("due_end must be after due_start")


def _validate_positive(name: str, value: int | None) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidPlanError(f"{name} must be a positive integer")


class CountPlanManager(BaseService):
    """
    Service for the count plan lifecycle.

    Contract:
        Returns frozen ``CountPlan`` DTOs.  Flushes within the caller's
        transaction.
    """

    def __init__(
        self,
        session: Session,
        config: CycleCountConfig,
        events: EventPublisher,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._config = config
        self._events = events
        self._journals = JournalSelector(session)

    # -- queries -----------------------------------------------------------

    def get_plan(self, plan_id: UUID) -> CountPlan:
        model = self.session.get(CountPlanModel, plan_id)
        if model is None:
            raise PlanNotFoundError(str(plan_id))
        return model.to_dto()

    def list_plans(self, status: PlanStatus | None = None) -> list[CountPlan]:
        stmt = select(CountPlanModel).order_by(CountPlanModel.created_at, CountPlanModel.code)
        if status is not None:
            stmt = stmt.where(CountPlanModel.status == status.value)
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    # -- lifecycle ---------------------------------------------------------

    def create_plan(
        self,
        name: str,
        scope: Iterable[ScopeSelector | dict[str, Any]],
        cadence: Cadence | str,
        due_start: datetime,
        due_end: datetime,
        actor: Actor,
        journal_size: int | None = None,
        interval_days: int | None = None,
        code: str | None = None,
    ) -> CountPlan:
        """
        Create a Draft plan.

        Raises:
            InsufficientAuthorityError: actor below ``plan_authority_tier``.
            InvalidPlanError: bad name, scope, window, size or code.
        """
        require_authority(
            actor, self._config.tier_for(actor.role),
            self._config.plan_authority_tier, "plan:create",
        )
        if not name or not name.strip():
            raise InvalidPlanError("name is required")
        selectors = _coerce_scope(scope)
        cadence_value = _coerce_cadence(cadence)
        _validate_window(due_start, due_end)
        size = journal_size if journal_size is not None else self._config.default_journal_size
        _validate_positive("journal_size", size)
        _validate_positive("interval_days", interval_days)

        plan_id = uuid4()
        code = (code or f"CC{plan_id.hex[:6].upper()}").strip()
        if not code or len(code) > 32:
            raise InvalidPlanError("code must be 1-32 characters")
        existing = self.session.execute(
            select(CountPlanModel.id).where(CountPlanModel.code == code)
        ).first()
        if existing is not None:
            raise InvalidPlanError(f"plan code {code!r} is already in use")

        now = self._clock.now()
        model = CountPlanModel(
            id=plan_id,
            code=code,
            name=name.strip(),
            scope=[s.to_dict() for s in selectors],
            cadence=cadence_value.value,
            interval_days=interval_days,
            due_start=due_start,
            due_end=due_end,
            journal_size=size,
            status=PlanStatus.DRAFT.value,
            created_by=actor.actor_id,
            created_at=now,
        )
        self.session.add(model)
        self.session.flush()

        self._events.emit(
            EventType.PLAN_CREATED,
            actor_id=actor.actor_id,
            plan_id=plan_id,
            payload={"code": code, "name": model.name, "cadence": cadence_value.value},
        )
        logger.info(
            "plan_created",
            extra={"plan_id": str(plan_id), "code": code, "journal_size": size},
        )
        return model.to_dto()

    def update_plan(self, plan_id: UUID, actor: Actor, **changes: Any) -> CountPlan:
        """Edit a Draft plan.  Accepts the fields ``create_plan`` takes."""
        require_authority(
            actor, self._config.tier_for(actor.role),
            self._config.plan_authority_tier, f"plan:{plan_id}",
        )
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise InvalidPlanError(f"fields cannot be edited: {', '.join(sorted(unknown))}")

        model = self._load_plan_for_update(plan_id)
        if model.status != PlanStatus.DRAFT.value:
            raise PlanImmutableError(str(plan_id), model.status)

        if "name" in changes:
            name = changes["name"]
            if not name or not name.strip():
                raise InvalidPlanError("name is required")
            model.name = name.strip()
        if "scope" in changes:
            model.scope = [s.to_dict() for s in _coerce_scope(changes["scope"])]
        if "cadence" in changes:
            model.cadence = _coerce_cadence(changes["cadence"]).value
        if "interval_days" in changes:
            _validate_positive("interval_days", changes["interval_days"])
            model.interval_days = changes["interval_days"]
        if "journal_size" in changes:
            if changes["journal_size"] is None:
                raise InvalidPlanError("journal_size must be a positive integer")
            _validate_positive("journal_size", changes["journal_size"])
            model.journal_size = changes["journal_size"]
        due_start = changes.get("due_start", model.due_start)
        due_end = changes.get("due_end", model.due_end)
        _validate_window(due_start, due_end)
        model.due_start = due_start
        model.due_end = due_end

        self.session.flush()
        logger.info(
            "plan_updated",
            extra={"plan_id": str(plan_id), "fields": sorted(changes)},
        )
        return model.to_dto()

    def activate_plan(self, plan_id: UUID, actor: Actor) -> CountPlan:
        require_authority(
            actor, self._config.tier_for(actor.role),
            self._config.plan_authority_tier, f"plan:{plan_id}",
        )
        model = self._load_plan_for_update(plan_id)
        self._transition(model, PlanStatus.ACTIVE)
        model.activated_at = self._clock.now()
        self.session.flush()

        self._events.emit(
            EventType.PLAN_ACTIVATED,
            actor_id=actor.actor_id,
            plan_id=plan_id,
            payload={"code": model.code},
        )
        logger.info("plan_activated", extra={"plan_id": str(plan_id), "code": model.code})
        return model.to_dto()

    def close_plan(self, plan_id: UUID, actor: Actor, reason: str) -> CountPlan:
        require_authority(
            actor, self._config.tier_for(actor.role),
            self._config.plan_authority_tier, f"plan:{plan_id}",
        )
        if not reason or not reason.strip():
            raise InvalidPlanError("a close reason is required")
        model = self._load_plan_for_update(plan_id)
        self._close(model, actor.actor_id, reason.strip())
        return model.to_dto()

    def refresh_status(self, plan_id: UUID) -> CountPlan:
        """
        Lazy auto-close.

        An Active plan closes once every journal derived from it is terminal
        (and there is at least one), or once ``due_end`` has passed.  Plans
        in any other status are returned unchanged.
        """
        model = self._load_plan_for_update(plan_id)
        if model.status != PlanStatus.ACTIVE.value:
            return model.to_dto()

        statuses = self._journals.journal_statuses_for_plan(plan_id)
        if statuses and all(s in TERMINAL_JOURNAL_STATUSES for s in statuses):
            self._close(model, SYSTEM_ACTOR, "all_journals_terminal")
        elif self._clock.now() >= model.due_end:
            self._close(model, SYSTEM_ACTOR, "due_window_lapsed")
        return model.to_dto()

    # -- internals ---------------------------------------------------------

    def _load_plan_for_update(self, plan_id: UUID) -> CountPlanModel:
        stmt = (
            select(CountPlanModel)
            .where(CountPlanModel.id == plan_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise PlanNotFoundError(str(plan_id))
        return model

    def _transition(self, model: CountPlanModel, to_status: PlanStatus) -> None:
        current = PlanStatus(model.status)
        if to_status not in PLAN_TRANSITIONS[current]:
            raise InvalidPlanTransitionError(str(model.id), current.value, to_status.value)
        model.status = to_status.value

    def _close(self, model: CountPlanModel, actor_id: str, reason: str) -> None:
        self._transition(model, PlanStatus.CLOSED)
        model.closed_at = self._clock.now()
        model.close_reason = reason
        self.session.flush()

        self._events.emit(
            EventType.PLAN_CLOSED,
            actor_id=actor_id,
            plan_id=model.id,
            payload={"code": model.code, "reason": reason},
        )
        logger.info(
            "plan_closed",
            extra={"plan_id": str(model.id), "code": model.code, "reason": reason},
        )
