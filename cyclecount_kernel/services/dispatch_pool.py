"""
DispatchPool -- journal claims, leases and reassignment.

Responsibility:
    Hands Pending journals to eligible operators under a time-limited
    lease, renews and releases leases, lets leads reassign work, and
    evicts holders whose lease has lapsed.

Architecture position:
    Kernel > Services -- imperative shell.
    Eligibility and claim-state decisions come from the pure
    ``cyclecount_engines.eligibility`` module.

Invariants enforced:
    - At most one live claimant per journal.  The claim is a
      compare-and-set on the journal version; the loser of a race gets
      AlreadyClaimedError.
    - Lease expiry is lazy: it is detected when a journal is next claimed
      (or swept).  Eviction discards counts of the open pass and emits
      journal.lease_expired; frozen passes are never touched.
    - Re-claim by the current holder renews the lease and keeps counts.
    - ``list_eligible`` never writes.

Failure modes:
    - JournalNotFoundError, AlreadyClaimedError, NotEligibleError,
      NotOwnerError, InvalidTransitionError (reassign outside dispatch
      states), InsufficientAuthorityError (reassign).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from cyclecount_engines.eligibility import (
    ClaimState,
    claim_state,
    evaluate_eligibility,
    lease_lapsed,
)
from cyclecount_kernel.domain.approval import Actor, require_authority
from cyclecount_kernel.domain.clock import Clock
from cyclecount_kernel.domain.dispatch import DispatchFilters, OperatorProfile
from cyclecount_kernel.domain.events import EventType
from cyclecount_kernel.domain.journal import (
    HELD_JOURNAL_STATUSES,
    Journal,
    JournalStatus,
    JournalSummary,
)
from cyclecount_kernel.exceptions import (
    AlreadyClaimedError,
    InvalidTransitionError,
    NotEligibleError,
    NotOwnerError,
)
from cyclecount_kernel.logging_config import get_logger
from cyclecount_kernel.models.journal import JournalModel
from cyclecount_kernel.selectors.journal_selector import JournalSelector
from cyclecount_kernel.services.base import JournalServiceBase
from cyclecount_kernel.services.event_publisher import EventPublisher

if TYPE_CHECKING:
    from cyclecount_config.schema import CycleCountConfig

logger = get_logger("services.dispatch")

_DISPATCH_STATUSES = frozenset({
    JournalStatus.PENDING,
    JournalStatus.ASSIGNED,
    JournalStatus.IN_PROGRESS,
})


class DispatchPool(JournalServiceBase):
    """
    Claim/lease management for journals.

    Contract:
        Every mutating method locks the journal row and returns a frozen
        ``Journal`` snapshot of the result.
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

    @property
    def lease_duration(self) -> timedelta:
        return timedelta(minutes=self._config.lease_minutes)

    def claim(self, journal_id: UUID, operator: OperatorProfile) -> Journal:
        """
        Claim a journal for ``operator``.

        Pending journals and journals whose lease has lapsed are claimable.
        A claim by the current holder renews the lease.

        Raises:
            AlreadyClaimedError: live lease held by another operator, or
                the version compare-and-set was lost.
            NotEligibleError: status not claimable or the operator fails
                the eligibility predicate.
        """
        model = self._load_journal_for_update(journal_id)
        now = self._clock.now()
        state = claim_state(
            status=JournalStatus(model.status),
            assigned_operator=model.assigned_operator,
            lease_expires_at=model.lease_expires_at,
            operator_id=operator.operator_id,
            now=now,
        )

        if state is ClaimState.NOT_CLAIMABLE:
            raise NotEligibleError(
                str(journal_id), operator.operator_id, (f"status_{model.status}",),
            )
        if state is ClaimState.HELD_BY_OTHER:
            logger.info(
                "claim_rejected_held",
                extra={"journal_id": str(journal_id), "operator_id": operator.operator_id},
            )
            raise AlreadyClaimedError(str(journal_id), model.assigned_operator)

        eligibility = evaluate_eligibility(
            operator=operator,
            warehouse=model.warehouse,
            zone=model.zone,
            required_skills=tuple(model.required_skills or ()),
            shift=model.shift,
        )
        if not eligibility.eligible:
            raise NotEligibleError(str(journal_id), operator.operator_id, eligibility.reasons)

        if state is ClaimState.HELD_BY_CALLER:
            return self._renew(model, now)

        if state is ClaimState.LEASE_LAPSED:
            self._evict(model)

        self._transition(model, JournalStatus.ASSIGNED, "claim")
        model.assigned_operator = operator.operator_id
        model.last_operator = operator.operator_id
        model.claimed_at = now
        model.lease_expires_at = now + self.lease_duration
        self._touch(model)
        self._flush_journal(
            model, on_conflict=lambda: AlreadyClaimedError(str(journal_id))
        )

        self._events.emit(
            EventType.JOURNAL_CLAIMED,
            actor_id=operator.operator_id,
            journal_id=model.id,
            plan_id=model.plan_id,
            payload={"lease_expires_at": model.lease_expires_at},
        )
        logger.info(
            "journal_claimed",
            extra={
                "journal_id": str(journal_id),
                "operator_id": operator.operator_id,
                "lease_expires_at": model.lease_expires_at,
            },
        )
        return model.to_dto()

    def release(self, journal_id: UUID, operator_id: str) -> Journal:
        """Give a held journal back to the pool, discarding open-pass counts."""
        model = self._load_journal_for_update(journal_id)
        self._require_live_holder(model, operator_id)

        discarded = self._discard_pending_counts(model)
        self._transition(model, JournalStatus.PENDING, "release")
        self._clear_claim(model)
        self._touch(model)
        self._flush_journal(model)

        self._events.emit(
            EventType.JOURNAL_RELEASED,
            actor_id=operator_id,
            journal_id=model.id,
            plan_id=model.plan_id,
            payload={"discarded_lines": discarded},
        )
        logger.info(
            "journal_released",
            extra={
                "journal_id": str(journal_id),
                "operator_id": operator_id,
                "discarded_lines": discarded,
            },
        )
        return model.to_dto()

    def reassign(self, journal_id: UUID, operator: OperatorProfile, actor: Actor) -> Journal:
        """
        Move a journal to ``operator`` on behalf of a lead.

        Counts of the open pass are discarded unless the journal is
        reassigned to its current holder.
        """
        require_authority(
            actor,
            self._config.tier_for(actor.role),
            self._config.reassign_authority_tier,
            f"journal:{journal_id}",
        )
        model = self._load_journal_for_update(journal_id)
        if JournalStatus(model.status) not in _DISPATCH_STATUSES:
            raise InvalidTransitionError(str(journal_id), model.status, "reassign")

        eligibility = evaluate_eligibility(
            operator=operator,
            warehouse=model.warehouse,
            zone=model.zone,
            required_skills=tuple(model.required_skills or ()),
            shift=model.shift,
        )
        if not eligibility.eligible:
            raise NotEligibleError(str(journal_id), operator.operator_id, eligibility.reasons)

        now = self._clock.now()
        previous = model.assigned_operator
        discarded = 0
        if previous != operator.operator_id:
            discarded = self._discard_pending_counts(model)
            self._transition(model, JournalStatus.ASSIGNED, "reassign")

        model.assigned_operator = operator.operator_id
        model.last_operator = operator.operator_id
        model.claimed_at = now
        model.lease_expires_at = now + self.lease_duration
        self._touch(model)
        self._flush_journal(model)

        self._events.emit(
            EventType.JOURNAL_REASSIGNED,
            actor_id=actor.actor_id,
            journal_id=model.id,
            plan_id=model.plan_id,
            payload={
                "from_operator": previous,
                "to_operator": operator.operator_id,
                "discarded_lines": discarded,
            },
        )
        logger.info(
            "journal_reassigned",
            extra={
                "journal_id": str(journal_id),
                "from_operator": previous,
                "to_operator": operator.operator_id,
                "actor_id": actor.actor_id,
                "discarded_lines": discarded,
            },
        )
        return model.to_dto()

    def renew_lease(self, journal_id: UUID, operator_id: str) -> Journal:
        model = self._load_journal_for_update(journal_id)
        self._require_live_holder(model, operator_id)
        return self._renew(model, self._clock.now())

    def list_eligible(
        self,
        operator: OperatorProfile,
        filters: DispatchFilters | None = None,
    ) -> tuple[JournalSummary, ...]:
        """
        Journals ``operator`` could claim right now.

        Pending journals and held journals whose lease has lapsed, that
        pass the eligibility predicate, ordered by journal number.
        """
        filters = filters or DispatchFilters()
        if filters.limit <= 0:
            return ()
        now = self._clock.now()
        candidates = self._journals.summaries(
            _DISPATCH_STATUSES,
            warehouse=filters.warehouse,
            zone=filters.zone,
            plan_id=filters.plan_id,
        )
        result: list[JournalSummary] = []
        for summary in candidates:
            if summary.status is not JournalStatus.PENDING and not lease_lapsed(
                summary.lease_expires_at, now
            ):
                continue
            eligibility = evaluate_eligibility(
                operator=operator,
                warehouse=summary.warehouse,
                zone=summary.zone,
                required_skills=summary.required_skills,
                shift=summary.shift,
            )
            if not eligibility.eligible:
                continue
            result.append(summary)
            if len(result) >= filters.limit:
                break
        return tuple(result)

    def sweep_expired_leases(self) -> list[UUID]:
        """Evict every holder whose lease has lapsed.  Returns the journal ids."""
        now = self._clock.now()
        ids = list(
            self.session.execute(
                select(JournalModel.id)
                .where(JournalModel.status.in_([s.value for s in HELD_JOURNAL_STATUSES]))
                .where(JournalModel.lease_expires_at <= now)
                .order_by(JournalModel.journal_number)
            ).scalars()
        )
        evicted: list[UUID] = []
        for journal_id in ids:
            model = self._load_journal_for_update(journal_id)
            if JournalStatus(model.status) not in HELD_JOURNAL_STATUSES:
                continue
            if not lease_lapsed(model.lease_expires_at, now):
                continue
            self._evict(model)
            self._touch(model)
            self._flush_journal(model)
            evicted.append(journal_id)
        if evicted:
            logger.info("expired_leases_swept", extra={"count": len(evicted)})
        return evicted

    # -- internals ---------------------------------------------------------

    def _require_live_holder(self, model: JournalModel, operator_id: str) -> None:
        now = self._clock.now()
        held = (
            JournalStatus(model.status) in HELD_JOURNAL_STATUSES
            and model.assigned_operator == operator_id
            and not lease_lapsed(model.lease_expires_at, now)
        )
        if not held:
            raise NotOwnerError(str(model.id), operator_id, model.assigned_operator)

    def _renew(self, model: JournalModel, now: datetime) -> Journal:
        model.lease_expires_at = now + self.lease_duration
        self._touch(model)
        self._flush_journal(model)

        self._events.emit(
            EventType.JOURNAL_LEASE_RENEWED,
            actor_id=model.assigned_operator,
            journal_id=model.id,
            plan_id=model.plan_id,
            payload={"lease_expires_at": model.lease_expires_at},
        )
        logger.debug(
            "lease_renewed",
            extra={"journal_id": str(model.id), "operator_id": model.assigned_operator},
        )
        return model.to_dto()

    def _evict(self, model: JournalModel) -> None:
        previous = model.assigned_operator
        expired_at = model.lease_expires_at
        discarded = self._discard_pending_counts(model)
        self._transition(model, JournalStatus.PENDING, "lease_expiry")
        self._clear_claim(model)

        self._events.emit(
            EventType.JOURNAL_LEASE_EXPIRED,
            actor_id=previous,
            journal_id=model.id,
            plan_id=model.plan_id,
            payload={
                "previous_operator": previous,
                "lease_expired_at": expired_at,
                "discarded_lines": discarded,
            },
        )
        logger.warning(
            "lease_expired",
            extra={
                "journal_id": str(model.id),
                "previous_operator": previous,
                "discarded_lines": discarded,
            },
        )

    @staticmethod
    def _clear_claim(model: JournalModel) -> None:
        model.assigned_operator = None
        model.claimed_at = None
        model.lease_expires_at = None
