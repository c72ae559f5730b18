"""
Tests for the approval decision fold.

Tests cover:
- Line approvals valid only for the pass they were recorded against
- Line approvals valid only when the approver's tier covers the line
- Journal-level approve, void and escalate bookkeeping
- blocking_lines for a given actor tier
- escalation_target
"""

from datetime import UTC, datetime
from uuid import uuid4

from cyclecount_engines.approval import (
    LineRequirement,
    blocking_lines,
    escalation_target,
    fold_decisions,
)
from cyclecount_kernel.domain.approval import (
    ApprovalAction,
    ApprovalDecisionRecord,
    ApprovalTier,
)

JOURNAL_ID = uuid4()


# =============================================================================
# Helpers
# =============================================================================


def make_decision(
    action: ApprovalAction,
    tier: ApprovalTier | None = ApprovalTier.LEAD,
    line_id=None,
    pass_number=None,
    target=None,
    actor_id: str = "lead-1",
) -> ApprovalDecisionRecord:
    return ApprovalDecisionRecord(
        decision_id=uuid4(),
        journal_id=JOURNAL_ID,
        review_round=1,
        actor_id=actor_id,
        actor_role="lead",
        action=action,
        actor_tier=tier,
        line_id=line_id,
        pass_number=pass_number,
        escalation_target=target,
        decided_at=datetime(2024, 1, 1, tzinfo=UTC),
    )


def make_requirement(tier=ApprovalTier.LEAD, pass_number=1) -> LineRequirement:
    return LineRequirement(line_id=uuid4(), pass_number=pass_number, required_tier=tier)


# =============================================================================
# fold_decisions
# =============================================================================


class TestFoldDecisions:

    def test_no_decisions(self):
        req = make_requirement(ApprovalTier.SUPERVISOR)
        state = fold_decisions(requirements=[req], decisions=[])
        assert not state.lines[0].approved
        assert state.outstanding_tier is ApprovalTier.SUPERVISOR
        assert not state.voided and not state.journal_approved

    def test_line_approval_for_current_pass_counts(self):
        req = make_requirement()
        state = fold_decisions(
            requirements=[req],
            decisions=[make_decision(ApprovalAction.APPROVE, line_id=req.line_id, pass_number=1)],
        )
        assert state.lines[0].approved
        assert state.lines[0].approved_by == "lead-1"
        assert state.outstanding_tier is None

    def test_approval_of_earlier_pass_is_stale(self):
        req = make_requirement(pass_number=2)
        state = fold_decisions(
            requirements=[req],
            decisions=[make_decision(ApprovalAction.APPROVE, line_id=req.line_id, pass_number=1)],
        )
        assert not state.lines[0].approved

    def test_approval_below_required_tier_ignored(self):
        req = make_requirement(ApprovalTier.MANAGER)
        state = fold_decisions(
            requirements=[req],
            decisions=[make_decision(
                ApprovalAction.APPROVE, tier=ApprovalTier.SUPERVISOR,
                line_id=req.line_id, pass_number=1,
            )],
        )
        assert not state.lines[0].approved

    def test_first_valid_approver_recorded(self):
        req = make_requirement()
        state = fold_decisions(
            requirements=[req],
            decisions=[
                make_decision(ApprovalAction.APPROVE, line_id=req.line_id, pass_number=1, actor_id="a"),
                make_decision(ApprovalAction.APPROVE, line_id=req.line_id, pass_number=1, actor_id="b"),
            ],
        )
        assert state.lines[0].approved_by == "a"

    def test_unknown_line_ignored(self):
        req = make_requirement()
        state = fold_decisions(
            requirements=[req],
            decisions=[make_decision(ApprovalAction.APPROVE, line_id=uuid4(), pass_number=1)],
        )
        assert not state.lines[0].approved

    def test_journal_level_flags(self):
        state = fold_decisions(
            requirements=[make_requirement()],
            decisions=[
                make_decision(ApprovalAction.ESCALATE, target=ApprovalTier.SUPERVISOR),
                make_decision(ApprovalAction.ESCALATE, target=ApprovalTier.MANAGER),
                make_decision(ApprovalAction.APPROVE, tier=ApprovalTier.MANAGER),
            ],
        )
        assert state.escalation_count == 2
        assert state.last_escalation_target is ApprovalTier.MANAGER
        assert state.journal_approved

    def test_void(self):
        state = fold_decisions(
            requirements=[make_requirement()],
            decisions=[make_decision(ApprovalAction.VOID)],
        )
        assert state.voided


class TestBlockingLines:

    def test_lead_blocked_by_major_line(self):
        minor = make_requirement(ApprovalTier.LEAD)
        major = make_requirement(ApprovalTier.SUPERVISOR)
        state = fold_decisions(requirements=[minor, major], decisions=[])
        blocking = blocking_lines(state, ApprovalTier.LEAD)
        assert [line.line_id for line in blocking] == [major.line_id]

    def test_line_approval_unblocks(self):
        major = make_requirement(ApprovalTier.SUPERVISOR)
        state = fold_decisions(
            requirements=[major],
            decisions=[make_decision(
                ApprovalAction.APPROVE, tier=ApprovalTier.SUPERVISOR,
                line_id=major.line_id, pass_number=1,
            )],
        )
        assert blocking_lines(state, ApprovalTier.LEAD) == ()

    def test_no_tier_blocks_everything(self):
        state = fold_decisions(requirements=[make_requirement()], decisions=[])
        assert len(blocking_lines(state, None)) == 1


class TestEscalationTarget:

    def test_one_above_actor(self):
        assert escalation_target(ApprovalTier.LEAD, None) is ApprovalTier.SUPERVISOR

    def test_outstanding_tier_when_higher(self):
        assert escalation_target(ApprovalTier.LEAD, ApprovalTier.MANAGER) is ApprovalTier.MANAGER

    def test_manager_stays_manager(self):
        assert escalation_target(ApprovalTier.MANAGER, ApprovalTier.LEAD) is ApprovalTier.MANAGER
