"""
Tests for the approval workflow.

Tests cover:
- Authority: tier required by the variance, reviewer floor, unknown roles
- Whole-journal approve, including lines covered by earlier line approvals
- Subset reject: only selected lines recounted, the rest untouched
- Recount rounds and the recount limit
- Escalation targets and decision log entries; escalation leaves status unchanged
- A recount lease that lapses returns the journal to the pool
- Void and the resulting plan auto-close
- Decision log immutability
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from cyclecount_kernel.domain.approval import ApprovalAction, ApprovalTier
from cyclecount_kernel.domain.events import EventType
from cyclecount_kernel.domain.journal import JournalStatus, LineStatus
from cyclecount_kernel.domain.plan import PlanStatus
from cyclecount_kernel.exceptions import (
    AlreadyClaimedError,
    ImmutabilityViolationError,
    InsufficientAuthorityError,
    InvalidTransitionError,
    LineNotOwnedByClaimantError,
    RecountLimitExceededError,
)
from cyclecount_kernel.models.approval import ApprovalDecisionModel
from tests.conftest import LEAD, MANAGER, OPERATOR_ACTOR, SUPERVISOR, VIEWER, make_operator


# =============================================================================
# Authority
# =============================================================================


class TestAuthority:

    def test_lead_approves_exact_count(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 100))
        approved = cycle_engine.approve(journal.id, LEAD)
        assert approved.status is JournalStatus.APPROVED
        types = [e.event_type for e in cycle_engine.events(journal_id=journal.id)]
        assert EventType.JOURNAL_REVIEW_STARTED in types
        assert EventType.JOURNAL_APPROVED in types

    def test_lead_cannot_approve_major_variance(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70))
        with pytest.raises(InsufficientAuthorityError) as exc_info:
            cycle_engine.approve(journal.id, LEAD)
        assert exc_info.value.required_tier == "supervisor"
        assert cycle_engine.get_journal(journal.id).status is JournalStatus.SUBMITTED
        assert cycle_engine.decision_log(journal.id) == []

    def test_supervisor_approves_major_variance(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70))
        assert cycle_engine.approve(journal.id, SUPERVISOR).status is JournalStatus.APPROVED

    def test_critical_needs_manager(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 10))
        with pytest.raises(InsufficientAuthorityError):
            cycle_engine.approve(journal.id, SUPERVISOR)
        assert cycle_engine.approve(journal.id, MANAGER).status is JournalStatus.APPROVED

    @pytest.mark.parametrize("actor", [OPERATOR_ACTOR, VIEWER])
    def test_below_reviewer_floor(self, submit_journal, cycle_engine, actor):
        journal = submit_journal()
        with pytest.raises(InsufficientAuthorityError):
            cycle_engine.begin_review(journal.id, actor)

    def test_line_approval_unblocks_lead(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 100), (100, 70))
        major_line = journal.lines[1]
        cycle_engine.approve_lines(journal.id, [major_line.id], SUPERVISOR)
        assert cycle_engine.approve(journal.id, LEAD).status is JournalStatus.APPROVED

    def test_lead_cannot_approve_major_line(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70))
        with pytest.raises(InsufficientAuthorityError):
            cycle_engine.approve_lines(journal.id, [journal.lines[0].id], LEAD)


# =============================================================================
# Review state
# =============================================================================


class TestReviewState:

    def test_begin_review(self, submit_journal, cycle_engine):
        journal = submit_journal()
        assert cycle_engine.begin_review(journal.id, LEAD).status is JournalStatus.UNDER_REVIEW
        with pytest.raises(InvalidTransitionError):
            cycle_engine.begin_review(journal.id, LEAD)

    def test_cannot_review_journal_in_progress(self, create_journal, cycle_engine):
        journal = create_journal()
        with pytest.raises(InvalidTransitionError):
            cycle_engine.approve(journal.id, MANAGER)

    def test_approval_state(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 100), (100, 70))
        state = cycle_engine.approval_state(journal.id)
        assert state.outstanding_tier is ApprovalTier.SUPERVISOR
        assert [line.required_tier for line in state.lines] == [
            ApprovalTier.LEAD, ApprovalTier.SUPERVISOR,
        ]


# =============================================================================
# Reject and recount
# =============================================================================


class TestReject:

    def test_subset_reject(self, submit_journal, cycle_engine, clock, cc_config):
        journal = submit_journal((100, 100), (100, 70), (50, 50))
        rejected_line = journal.lines[1]

        after = cycle_engine.reject(journal.id, [rejected_line.id], SUPERVISOR, "recount bin 2")

        assert after.status is JournalStatus.IN_PROGRESS
        assert after.assigned_operator == "op-1"
        assert after.lease_is_live(clock.now())
        by_id = {line.id: line for line in after.lines}
        assert by_id[rejected_line.id].status is LineStatus.RECOUNT_REQUESTED
        assert by_id[rejected_line.id].pass_number == 2
        assert by_id[rejected_line.id].counted_quantity is None
        for untouched in (journal.lines[0], journal.lines[2]):
            assert by_id[untouched.id].status is LineStatus.COUNTED
            assert by_id[untouched.id].pass_number == 1
            assert by_id[untouched.id].counted_quantity == untouched.counted_quantity

    def test_recount_and_resubmit(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 100), (100, 70))
        first, second = journal.lines
        cycle_engine.reject(journal.id, [second.id], SUPERVISOR)

        with pytest.raises(LineNotOwnedByClaimantError) as exc_info:
            cycle_engine.record_count(first.id, "op-1", 99)
        assert exc_info.value.reason == "line_not_in_counting_scope"

        cycle_engine.record_count(second.id, "op-1", 100)
        resubmitted = cycle_engine.submit(journal.id, "op-1")

        assert resubmitted.review_round == 2
        assert resubmitted.required_tier is ApprovalTier.LEAD
        assert [p.pass_number for p in cycle_engine.count_passes(second.id)] == [1, 2]
        assert len(cycle_engine.count_passes(first.id)) == 1
        current = {r.line_id: r for r in cycle_engine.variance_records(journal.id)}
        assert current[second.id].pass_number == 2
        assert current[second.id].delta == Decimal("0")
        history = cycle_engine.variance_records(journal.id, current_only=False)
        assert len(history) == 3
        assert cycle_engine.approve(resubmitted.id, LEAD).status is JournalStatus.APPROVED

    def test_line_approval_survives_other_line_recount(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70), (100, 70))
        kept, recounted = journal.lines
        cycle_engine.approve_lines(journal.id, [kept.id], SUPERVISOR)
        cycle_engine.reject(journal.id, [recounted.id], SUPERVISOR)
        cycle_engine.record_count(recounted.id, "op-1", 100)
        cycle_engine.submit(journal.id, "op-1")

        state = cycle_engine.approval_state(journal.id)
        assert {line.line_id for line in state.outstanding_lines} == {recounted.id}
        assert cycle_engine.approve(journal.id, LEAD).status is JournalStatus.APPROVED

    def test_recount_requires_fresh_approval(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70))
        (line,) = journal.lines
        cycle_engine.approve_lines(journal.id, [line.id], SUPERVISOR)
        cycle_engine.reject(journal.id, [line.id], SUPERVISOR)
        cycle_engine.record_count(line.id, "op-1", 60)
        cycle_engine.submit(journal.id, "op-1")
        assert not cycle_engine.approval_state(journal.id).lines[0].approved

    def test_recount_limit(self, submit_journal, cycle_engine, cc_config):
        journal = submit_journal((100, 70))
        (line,) = journal.lines
        for _ in range(cc_config.max_passes - 1):
            cycle_engine.reject(journal.id, [line.id], SUPERVISOR)
            cycle_engine.record_count(line.id, "op-1", 70)
            cycle_engine.submit(journal.id, "op-1")
        with pytest.raises(RecountLimitExceededError):
            cycle_engine.reject(journal.id, [line.id], SUPERVISOR)
        assert cycle_engine.get_journal(journal.id).lines[0].pass_number == cc_config.max_passes

    def test_reject_needs_lines(self, submit_journal, cycle_engine):
        journal = submit_journal()
        with pytest.raises(ValueError):
            cycle_engine.reject(journal.id, [], LEAD)

    def test_recount_lease_lapses_to_pool(self, submit_journal, cycle_engine, clock, cc_config):
        journal = submit_journal((100, 70))
        cycle_engine.reject(journal.id, [journal.lines[0].id], SUPERVISOR)
        with pytest.raises(AlreadyClaimedError):
            cycle_engine.claim(journal.id, make_operator("op-2"))

        clock.advance_minutes(cc_config.lease_minutes + 1)
        claimed = cycle_engine.claim(journal.id, make_operator("op-2"))
        assert claimed.assigned_operator == "op-2"

    def test_reject_requires_line_tier(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70))
        with pytest.raises(InsufficientAuthorityError):
            cycle_engine.reject(journal.id, [journal.lines[0].id], LEAD)

    def test_line_rejected_events(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70), (100, 70))
        cycle_engine.reject(journal.id, [line.id for line in journal.lines], SUPERVISOR, "both")
        events = cycle_engine.events(journal_id=journal.id, event_type=EventType.LINE_REJECTED)
        assert {e.payload["line_id"] for e in events} == {str(line.id) for line in journal.lines}
        assert {e.payload["pass_number"] for e in events} == {2}


# =============================================================================
# Escalate and void
# =============================================================================


class TestEscalate:

    def test_lead_escalates_major_to_supervisor(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70))
        after = cycle_engine.escalate(journal.id, LEAD, "over my limit")
        assert after.status is JournalStatus.SUBMITTED
        assert cycle_engine.events(
            journal_id=journal.id, event_type=EventType.JOURNAL_REVIEW_STARTED
        ) == []
        (decision,) = cycle_engine.decision_log(journal.id)
        assert decision.action is ApprovalAction.ESCALATE
        assert decision.escalation_target is ApprovalTier.SUPERVISOR
        assert decision.line_id is None
        (event,) = cycle_engine.events(journal_id=journal.id, event_type=EventType.JOURNAL_ESCALATED)
        assert event.payload["target_tier"] == "supervisor"

    def test_critical_escalates_straight_to_manager(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 10))
        cycle_engine.escalate(journal.id, LEAD)
        (decision,) = cycle_engine.decision_log(journal.id)
        assert decision.escalation_target is ApprovalTier.MANAGER

    def test_line_level_escalation(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 100), (100, 70))
        cycle_engine.escalate(journal.id, LEAD, line_ids=(journal.lines[1].id,))
        (decision,) = cycle_engine.decision_log(journal.id)
        assert decision.line_id == journal.lines[1].id
        assert decision.pass_number == 1

    def test_escalate_during_review_keeps_status(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70))
        cycle_engine.begin_review(journal.id, LEAD)
        after = cycle_engine.escalate(journal.id, LEAD)
        assert after.status is JournalStatus.UNDER_REVIEW

    def test_escalate_requires_reviewable_journal(self, create_journal, cycle_engine):
        journal = create_journal()
        with pytest.raises(InvalidTransitionError):
            cycle_engine.escalate(journal.id, LEAD)
        assert cycle_engine.decision_log(journal.id) == []


class TestVoid:

    def test_void_closes_plan(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70))
        voided = cycle_engine.void(journal.id, SUPERVISOR, "wrong location")
        assert voided.status is JournalStatus.REJECTED
        plan = cycle_engine.get_plan(journal.plan_id)
        assert plan.status is PlanStatus.CLOSED
        assert plan.close_reason == "all_journals_terminal"
        assert cycle_engine.events(journal_id=journal.id, event_type=EventType.JOURNAL_REJECTED)

    def test_void_requires_journal_tier(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70))
        with pytest.raises(InsufficientAuthorityError):
            cycle_engine.void(journal.id, LEAD)

    def test_voided_journal_is_terminal(self, submit_journal, cycle_engine):
        journal = submit_journal()
        cycle_engine.void(journal.id, LEAD)
        with pytest.raises(InvalidTransitionError):
            cycle_engine.approve(journal.id, MANAGER)


class TestDecisionLog:

    def test_ordered_log(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 100), (100, 70))
        cycle_engine.escalate(journal.id, LEAD)
        cycle_engine.approve_lines(journal.id, [journal.lines[1].id], SUPERVISOR)
        cycle_engine.approve(journal.id, SUPERVISOR)
        actions = [d.action for d in cycle_engine.decision_log(journal.id)]
        assert actions == [ApprovalAction.ESCALATE, ApprovalAction.APPROVE, ApprovalAction.APPROVE]

    def test_decisions_are_immutable(self, submit_journal, cycle_engine, session):
        journal = submit_journal()
        cycle_engine.approve(journal.id, LEAD)
        decision = session.execute(
            select(ApprovalDecisionModel).where(ApprovalDecisionModel.journal_id == journal.id)
        ).scalar_one()
        decision.comment = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
