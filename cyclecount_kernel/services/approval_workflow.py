"""
ApprovalWorkflow -- tiered review of submitted journals.

Responsibility:
    Records reviewer decisions (approve lines, reject lines for recount,
    approve the journal, escalate, void) in the append-only decision log
    and applies the resulting journal transition.

Architecture position:
    Kernel > Services -- imperative shell.
    Authority checks go through ``require_authority``; the journal's
    approval state is always the pure fold in ``cyclecount_engines.approval``.

Invariants enforced:
    - Single authority predicate: the actor's tier must be at or above the
      tier a line (or the journal) requires.  Unknown roles have none.
    - Reviewers are at least lead.
    - Rejecting a subset of lines moves only those lines to a new pass;
      other lines keep their counts, passes and approvals.
    - A line can be counted at most ``max_passes`` times.
    - Decision order is total per journal (decision_seq assigned under the
      journal row lock).

Failure modes:
    - InvalidTransitionError when the journal is not Submitted/UnderReview.
    - InsufficientAuthorityError for under-authorized actors.
    - RecountLimitExceededError, LineNotFoundError.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cyclecount_engines.approval import (
    JournalApprovalState,
    LineRequirement,
    blocking_lines,
    escalation_target,
    fold_decisions,
)
from cyclecount_kernel.domain.approval import (
    ApprovalAction,
    ApprovalDecisionRecord,
    ApprovalTier,
    Actor,
    require_authority,
)
from cyclecount_kernel.domain.clock import Clock
from cyclecount_kernel.domain.events import EventType
from cyclecount_kernel.domain.journal import (
    REVIEWABLE_JOURNAL_STATUSES,
    Journal,
    JournalStatus,
)
from cyclecount_kernel.exceptions import (
    InsufficientAuthorityError,
    InvalidTransitionError,
    JournalNotFoundError,
    LineNotFoundError,
    RecountLimitExceededError,
)
from cyclecount_kernel.logging_config import get_logger
from cyclecount_kernel.models.approval import ApprovalDecisionModel
from cyclecount_kernel.models.journal import JournalLineModel, JournalModel
from cyclecount_kernel.selectors.journal_selector import JournalSelector
from cyclecount_kernel.services.base import JournalServiceBase
from cyclecount_kernel.services.event_publisher import EventPublisher
from cyclecount_kernel.services.plan_service import CountPlanManager

if TYPE_CHECKING:
    from cyclecount_config.schema import CycleCountConfig

logger = get_logger("services.approval")

REVIEWER_FLOOR = ApprovalTier.LEAD


class ApprovalWorkflow(JournalServiceBase):
    """
    Reviewer operations on submitted journals.

    Contract:
        Every mutating method locks the journal, enters review implicitly
        when the journal is still Submitted, and returns a ``Journal``
        snapshot.
    """

    def __init__(
        self,
        session: Session,
        config: CycleCountConfig,
        events: EventPublisher,
        plans: CountPlanManager,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._config = config
        self._events = events
        self._plans = plans
        self._journals = JournalSelector(session)

    # -- queries -----------------------------------------------------------

    def decision_log(self, journal_id: UUID) -> list[ApprovalDecisionRecord]:
        return self._journals.decisions(journal_id)

    def approval_state(self, journal_id: UUID) -> JournalApprovalState:
        model = self.session.get(JournalModel, journal_id)
        if model is None:
            raise JournalNotFoundError(str(journal_id))
        return fold_decisions(
            requirements=self._requirements(model),
            decisions=self._journals.decisions(journal_id),
        )

    # -- decisions ---------------------------------------------------------

    def begin_review(self, journal_id: UUID, actor: Actor) -> Journal:
        tier = self._reviewer_tier(actor, journal_id)
        model = self._load_journal_for_update(journal_id)
        if model.status != JournalStatus.SUBMITTED.value:
            raise InvalidTransitionError(str(journal_id), model.status, "begin_review")
        self._enter_review(model, actor, tier, "begin_review")
        self._flush_journal(model)
        return model.to_dto()

    def approve_lines(
        self,
        journal_id: UUID,
        line_ids: Iterable[UUID],
        actor: Actor,
        comment: str = "",
    ) -> Journal:
        """Record per-line Approve decisions for the lines' current pass."""
        line_ids = tuple(line_ids)
        if not line_ids:
            raise ValueError("approve_lines requires at least one line")
        tier = self._reviewer_tier(actor, journal_id)
        model = self._load_journal_for_update(journal_id)
        self._enter_review(model, actor, tier, "approve_lines")
        requirements = {r.line_id: r for r in self._requirements(model)}

        for line_id in line_ids:
            req = requirements.get(line_id)
            if req is None:
                raise LineNotFoundError(str(line_id))
            require_authority(actor, tier, req.required_tier, f"line:{line_id}")
            self._append_decision(
                model, ApprovalAction.APPROVE, actor, tier,
                line_id=line_id, pass_number=req.pass_number, comment=comment,
            )
            self._events.emit(
                EventType.LINE_APPROVED,
                actor_id=actor.actor_id,
                journal_id=model.id,
                plan_id=model.plan_id,
                payload={"line_id": line_id, "pass_number": req.pass_number},
            )

        self._touch(model)
        self._flush_journal(model)
        logger.info(
            "lines_approved",
            extra={
                "journal_id": str(journal_id),
                "actor_id": actor.actor_id,
                "line_count": len(line_ids),
            },
        )
        return model.to_dto()

    def reject(
        self,
        journal_id: UUID,
        line_ids: Iterable[UUID],
        actor: Actor,
        comment: str = "",
    ) -> Journal:
        """
        Send the selected lines back for a recount.

        Selected lines move to the next pass as RecountRequested.  The
        journal returns to InProgress, held by its last operator with a
        fresh lease.  Eligibility and availability are not re-checked for
        that operator; if they cannot recount, the lease lapses after
        ``lease_minutes`` and any eligible operator may claim the journal,
        or a lead may reassign it sooner.
        """
        line_ids = tuple(dict.fromkeys(line_ids))
        if not line_ids:
            raise ValueError("reject requires at least one line")
        tier = self._reviewer_tier(actor, journal_id)
        model = self._load_journal_for_update(journal_id)
        self._enter_review(model, actor, tier, "reject")
        requirements = {r.line_id: r for r in self._requirements(model)}
        lines = {line.id: line for line in model.lines}

        selected: list[JournalLineModel] = []
        for line_id in line_ids:
            line = lines.get(line_id)
            if line is None:
                raise LineNotFoundError(str(line_id))
            require_authority(
                actor, tier, requirements[line_id].required_tier, f"line:{line_id}"
            )
            if line.pass_number >= self._config.max_passes:
                raise RecountLimitExceededError(str(line_id), self._config.max_passes)
            selected.append(line)

        for line in selected:
            self._append_decision(
                model, ApprovalAction.REJECT, actor, tier,
                line_id=line.id, pass_number=line.pass_number, comment=comment,
            )
            line.pass_number += 1
            self._reset_line(line)

        now = self._clock.now()
        self._transition(model, JournalStatus.IN_PROGRESS, "reject")
        model.assigned_operator = model.last_operator
        model.claimed_at = now
        model.lease_expires_at = now + timedelta(minutes=self._config.lease_minutes)
        self._touch(model)
        self._flush_journal(model)

        for line in selected:
            self._events.emit(
                EventType.LINE_REJECTED,
                actor_id=actor.actor_id,
                journal_id=model.id,
                plan_id=model.plan_id,
                payload={
                    "line_id": line.id,
                    "pass_number": line.pass_number,
                    "comment": comment,
                },
            )
        logger.info(
            "lines_rejected",
            extra={
                "journal_id": str(journal_id),
                "actor_id": actor.actor_id,
                "line_count": len(selected),
                "assigned_operator": model.assigned_operator,
            },
        )
        return model.to_dto()

    def approve(self, journal_id: UUID, actor: Actor, comment: str = "") -> Journal:
        """
        Approve the whole journal.

        Valid when every line is covered by the actor's tier or already
        holds a valid line approval for its current pass.
        """
        tier = self._reviewer_tier(actor, journal_id)
        model = self._load_journal_for_update(journal_id)
        self._enter_review(model, actor, tier, "approve")

        state = fold_decisions(
            requirements=self._requirements(model),
            decisions=self._journals.decisions(model.id),
        )
        blocking = blocking_lines(state, tier)
        if blocking:
            needed = max(line.required_tier for line in blocking)
            logger.warning(
                "approve_blocked",
                extra={
                    "journal_id": str(journal_id),
                    "actor_id": actor.actor_id,
                    "blocking_lines": len(blocking),
                    "required_tier": needed.label,
                },
            )
            raise InsufficientAuthorityError(actor.role, needed.label, f"journal:{journal_id}")

        self._append_decision(model, ApprovalAction.APPROVE, actor, tier, comment=comment)
        self._transition(model, JournalStatus.APPROVED, "approve")
        self._touch(model)
        self._flush_journal(model)

        self._events.emit(
            EventType.JOURNAL_APPROVED,
            actor_id=actor.actor_id,
            journal_id=model.id,
            plan_id=model.plan_id,
            payload={"review_round": model.review_round, "actor_tier": tier.label},
        )
        logger.info(
            "journal_approved",
            extra={
                "journal_id": str(journal_id),
                "actor_id": actor.actor_id,
                "review_round": model.review_round,
            },
        )
        return model.to_dto()

    def escalate(
        self,
        journal_id: UUID,
        actor: Actor,
        comment: str = "",
        line_ids: Iterable[UUID] = (),
    ) -> Journal:
        """Ask a higher tier to decide.  Status is unchanged."""
        line_ids = tuple(line_ids)
        tier = self._reviewer_tier(actor, journal_id)
        model = self._load_journal_for_update(journal_id)
        status = JournalStatus(model.status)
        if status not in REVIEWABLE_JOURNAL_STATUSES:
            raise InvalidTransitionError(str(model.id), status.value, "escalate")

        requirements = self._requirements(model)
        state = fold_decisions(
            requirements=requirements,
            decisions=self._journals.decisions(model.id),
        )
        target = escalation_target(tier, state.outstanding_tier)

        if line_ids:
            by_line = {r.line_id: r for r in requirements}
            for line_id in line_ids:
                req = by_line.get(line_id)
                if req is None:
                    raise LineNotFoundError(str(line_id))
                self._append_decision(
                    model, ApprovalAction.ESCALATE, actor, tier,
                    line_id=line_id, pass_number=req.pass_number,
                    target=target, comment=comment,
                )
        else:
            self._append_decision(
                model, ApprovalAction.ESCALATE, actor, tier,
                target=target, comment=comment,
            )
        self._touch(model)
        self._flush_journal(model)

        self._events.emit(
            EventType.JOURNAL_ESCALATED,
            actor_id=actor.actor_id,
            journal_id=model.id,
            plan_id=model.plan_id,
            payload={
                "target_tier": target.label,
                "line_ids": list(line_ids),
                "comment": comment,
            },
        )
        logger.info(
            "journal_escalated",
            extra={
                "journal_id": str(journal_id),
                "actor_id": actor.actor_id,
                "target_tier": target.label,
            },
        )
        return model.to_dto()

    def void(self, journal_id: UUID, actor: Actor, comment: str = "") -> Journal:
        """Terminally reject the whole journal.  Nothing is reconciled."""
        tier = self._reviewer_tier(actor, journal_id)
        model = self._load_journal_for_update(journal_id)
        self._enter_review(model, actor, tier, "void")
        required = (
            ApprovalTier(model.required_tier)
            if model.required_tier is not None
            else REVIEWER_FLOOR
        )
        require_authority(actor, tier, required, f"journal:{journal_id}")

        self._append_decision(model, ApprovalAction.VOID, actor, tier, comment=comment)
        self._transition(model, JournalStatus.REJECTED, "void")
        self._touch(model)
        self._flush_journal(model)

        self._events.emit(
            EventType.JOURNAL_REJECTED,
            actor_id=actor.actor_id,
            journal_id=model.id,
            plan_id=model.plan_id,
            payload={"review_round": model.review_round, "comment": comment},
        )
        logger.info(
            "journal_voided",
            extra={"journal_id": str(journal_id), "actor_id": actor.actor_id},
        )
        self._plans.refresh_status(model.plan_id)
        return model.to_dto()

    # -- internals ---------------------------------------------------------

    def _reviewer_tier(self, actor: Actor, journal_id: UUID) -> ApprovalTier:
        tier = self._config.tier_for(actor.role)
        require_authority(actor, tier, REVIEWER_FLOOR, f"journal:{journal_id}")
        return tier

    def _enter_review(
        self, model: JournalModel, actor: Actor, tier: ApprovalTier, action: str
    ) -> None:
        status = JournalStatus(model.status)
        if status not in REVIEWABLE_JOURNAL_STATUSES:
            raise InvalidTransitionError(str(model.id), status.value, action)
        if status is JournalStatus.UNDER_REVIEW:
            return
        self._transition(model, JournalStatus.UNDER_REVIEW, action)
        self._events.emit(
            EventType.JOURNAL_REVIEW_STARTED,
            actor_id=actor.actor_id,
            journal_id=model.id,
            plan_id=model.plan_id,
            payload={"review_round": model.review_round, "actor_tier": tier.label},
        )
        logger.info(
            "review_started",
            extra={"journal_id": str(model.id), "actor_id": actor.actor_id},
        )

    def _requirements(self, model: JournalModel) -> list[LineRequirement]:
        records = {
            r.line_id: r for r in self._journals.variance_records(model.id, current_only=True)
        }
        fallback = (
            ApprovalTier(model.required_tier)
            if model.required_tier is not None
            else REVIEWER_FLOOR
        )
        return [
            LineRequirement(
                line_id=line.id,
                pass_number=line.pass_number,
                required_tier=(
                    records[line.id].required_tier if line.id in records else fallback
                ),
            )
            for line in model.lines
        ]

    def _append_decision(
        self,
        model: JournalModel,
        action: ApprovalAction,
        actor: Actor,
        tier: ApprovalTier | None,
        line_id: UUID | None = None,
        pass_number: int | None = None,
        target: ApprovalTier | None = None,
        comment: str = "",
    ) -> None:
        last_seq = self.session.execute(
            select(func.max(ApprovalDecisionModel.decision_seq)).where(
                ApprovalDecisionModel.journal_id == model.id
            )
        ).scalar_one()
        self.session.add(
            ApprovalDecisionModel(
                journal_id=model.id,
                decision_seq=(last_seq or 0) + 1,
                line_id=line_id,
                pass_number=pass_number,
                review_round=model.review_round,
                actor_id=actor.actor_id,
                actor_role=actor.role,
                actor_tier=int(tier) if tier is not None else None,
                action=action.value,
                escalation_target=int(target) if target is not None else None,
                comment=comment or "",
                decided_at=self._clock.now(),
            )
        )
        self.session.flush()
