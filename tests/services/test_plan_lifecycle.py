"""
Tests for the count plan lifecycle.

Tests cover:
- create_plan validation and authority
- Plan codes: generated, explicit, duplicate
- Draft edits and immutability after activation
- Activation and manual close
- Automatic close: all journals terminal, due window lapsed
- Plan events
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from cyclecount_kernel.domain.events import EventType
from cyclecount_kernel.domain.plan import Cadence, PlanStatus, ScopeSelector
from cyclecount_kernel.exceptions import (
    InsufficientAuthorityError,
    InvalidPlanError,
    InvalidPlanTransitionError,
    PlanImmutableError,
    PlanNotFoundError,
)
from tests.conftest import LEAD, OPERATOR_ACTOR, VIEWER, default_scope


@pytest.fixture
def draft_plan(cycle_engine, clock):
    def _create(**kwargs):
        params = dict(
            name="Zone A weekly",
            scope=default_scope(),
            cadence=Cadence.WEEKLY,
            due_start=clock.now(),
            due_end=clock.now() + timedelta(days=7),
            actor=LEAD,
        )
        params.update(kwargs)
        return cycle_engine.create_plan(**params)

    return _create


# =============================================================================
# Creation
# =============================================================================


class TestCreatePlan:

    def test_creates_draft(self, draft_plan, cc_config):
        plan = draft_plan()
        assert plan.status is PlanStatus.DRAFT
        assert plan.journal_size == cc_config.default_journal_size
        assert plan.code.startswith("CC")
        assert plan.created_by == LEAD.actor_id

    def test_scope_accepts_dicts(self, draft_plan):
        plan = draft_plan(scope=[{"warehouse": "WH1", "zone": "A"}])
        assert plan.scope == (ScopeSelector(warehouse="WH1", zone="A"),)

    def test_explicit_code(self, draft_plan):
        assert draft_plan(code="Q1-ZONE-A").code == "Q1-ZONE-A"

    def test_duplicate_code_rejected(self, draft_plan):
        draft_plan(code="DUP")
        with pytest.raises(InvalidPlanError):
            draft_plan(code="DUP")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"name": "  "},
            {"scope": ()},
            {"scope": (ScopeSelector(),)},
            {"cadence": "fortnightly"},
            {"journal_size": 0},
            {"interval_days": -3},
            {"code": "X" * 33},
        ],
    )
    def test_invalid_input(self, draft_plan, kwargs):
        with pytest.raises(InvalidPlanError):
            draft_plan(**kwargs)

    def test_due_end_must_follow_start(self, draft_plan, clock):
        with pytest.raises(InvalidPlanError):
            draft_plan(due_end=clock.now())

    def test_naive_window_rejected(self, draft_plan):
        with pytest.raises(InvalidPlanError):
            draft_plan(due_start=datetime(2024, 1, 1), due_end=datetime(2024, 2, 1))

    @pytest.mark.parametrize("actor", [OPERATOR_ACTOR, VIEWER])
    def test_requires_plan_authority(self, draft_plan, actor):
        with pytest.raises(InsufficientAuthorityError):
            draft_plan(actor=actor)

    def test_emits_plan_created(self, draft_plan, cycle_engine):
        plan = draft_plan()
        events = cycle_engine.events(plan_id=plan.id)
        assert [e.event_type for e in events] == [EventType.PLAN_CREATED]


# =============================================================================
# Editing
# =============================================================================


class TestUpdatePlan:

    def test_draft_is_editable(self, draft_plan, cycle_engine):
        plan = draft_plan()
        updated = cycle_engine.update_plan(plan.id, LEAD, name="Renamed", journal_size=10)
        assert updated.name == "Renamed"
        assert updated.journal_size == 10

    def test_unknown_field(self, draft_plan, cycle_engine):
        plan = draft_plan()
        with pytest.raises(InvalidPlanError):
            cycle_engine.update_plan(plan.id, LEAD, status="closed")

    def test_active_plan_is_immutable(self, draft_plan, cycle_engine):
        plan = draft_plan()
        cycle_engine.activate_plan(plan.id, LEAD)
        with pytest.raises(PlanImmutableError):
            cycle_engine.update_plan(plan.id, LEAD, name="Too late")
        assert cycle_engine.get_plan(plan.id).name == "Zone A weekly"

    def test_missing_plan(self, cycle_engine):
        with pytest.raises(PlanNotFoundError):
            cycle_engine.get_plan(uuid4())


# =============================================================================
# Activation and closing
# =============================================================================


class TestActivateAndClose:

    def test_activate(self, draft_plan, cycle_engine, clock):
        plan = cycle_engine.activate_plan(draft_plan().id, LEAD)
        assert plan.status is PlanStatus.ACTIVE
        assert plan.activated_at == clock.now()

    def test_activate_twice(self, draft_plan, cycle_engine):
        plan = draft_plan()
        cycle_engine.activate_plan(plan.id, LEAD)
        with pytest.raises(InvalidPlanTransitionError):
            cycle_engine.activate_plan(plan.id, LEAD)

    def test_draft_cannot_close(self, draft_plan, cycle_engine):
        with pytest.raises(InvalidPlanTransitionError):
            cycle_engine.close_plan(draft_plan().id, LEAD, "cancelled")

    def test_close_requires_reason(self, create_active_plan, cycle_engine):
        plan = create_active_plan()
        with pytest.raises(InvalidPlanError):
            cycle_engine.close_plan(plan.id, LEAD, "")

    def test_manual_close(self, create_active_plan, cycle_engine):
        plan = create_active_plan()
        closed = cycle_engine.close_plan(plan.id, LEAD, "stocktake moved")
        assert closed.status is PlanStatus.CLOSED
        assert closed.close_reason == "stocktake moved"
        assert cycle_engine.events(plan_id=plan.id, event_type=EventType.PLAN_CLOSED)

    def test_list_plans_by_status(self, draft_plan, create_active_plan, cycle_engine):
        draft_plan()
        active = create_active_plan()
        assert [p.id for p in cycle_engine.list_plans(PlanStatus.ACTIVE)] == [active.id]
        assert len(cycle_engine.list_plans()) == 2


class TestRefreshStatus:

    def test_open_journals_keep_plan_active(self, create_journal, cycle_engine):
        journal = create_journal()
        plan = cycle_engine.refresh_plan_status(journal.plan_id)
        assert plan.status is PlanStatus.ACTIVE

    def test_lapsed_window_closes(self, create_journal, cycle_engine, clock):
        journal = create_journal()
        clock.advance(31 * 24 * 3600)
        plan = cycle_engine.refresh_plan_status(journal.plan_id)
        assert plan.status is PlanStatus.CLOSED
        assert plan.close_reason == "due_window_lapsed"

    def test_draft_untouched(self, draft_plan, cycle_engine, clock):
        plan = draft_plan()
        clock.advance(30 * 24 * 3600)
        assert cycle_engine.refresh_plan_status(plan.id).status is PlanStatus.DRAFT
