"""
Tests for count plan domain types.

Tests cover:
- ScopeSelector matching on each field and on combinations
- Any-selector scope semantics, including the empty scope
- Selector dict round trip used for persistence
- Plan status transitions and cadence intervals
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from cyclecount_kernel.domain.plan import (
    PLAN_TRANSITIONS,
    Cadence,
    CountPlan,
    PlanStatus,
    ScopeSelector,
    in_scope,
)
from tests.conftest import make_row


# =============================================================================
# ScopeSelector.matches
# =============================================================================


class TestScopeSelectorMatches:

    def test_warehouse_only(self):
        selector = ScopeSelector(warehouse="WH1")
        assert selector.matches(make_row("ITEM-1", 5, warehouse="WH1"))
        assert not selector.matches(make_row("ITEM-1", 5, warehouse="WH2"))

    def test_zone_none_on_row_does_not_match_set_zone(self):
        selector = ScopeSelector(zone="A")
        assert not selector.matches(make_row("ITEM-1", 5, zone=None))

    def test_location_prefix(self):
        selector = ScopeSelector(location_prefix="A-01")
        assert selector.matches(make_row("ITEM-1", 5, location_code="A-01-03"))
        assert not selector.matches(make_row("ITEM-1", 5, location_code="B-01-03"))

    def test_item_codes_restrict_when_present(self):
        selector = ScopeSelector(warehouse="WH1", item_codes=("ITEM-1", "ITEM-2"))
        assert selector.matches(make_row("ITEM-2", 5))
        assert not selector.matches(make_row("ITEM-3", 5))

    def test_abc_class(self):
        selector = ScopeSelector(abc_class="A")
        assert selector.matches(make_row("ITEM-1", 5, abc_class="A"))
        assert not selector.matches(make_row("ITEM-1", 5, abc_class="C"))

    def test_all_set_fields_must_match(self):
        selector = ScopeSelector(warehouse="WH1", zone="A", abc_class="A")
        assert selector.matches(make_row("ITEM-1", 5, zone="A", abc_class="A"))
        assert not selector.matches(make_row("ITEM-1", 5, zone="B", abc_class="A"))

    def test_is_empty(self):
        assert ScopeSelector().is_empty
        assert not ScopeSelector(item_codes=("X",)).is_empty


class TestInScope:

    def test_any_selector_matches(self):
        scope = (ScopeSelector(zone="A"), ScopeSelector(zone="B"))
        assert in_scope(scope, make_row("ITEM-1", 5, zone="B"))
        assert not in_scope(scope, make_row("ITEM-1", 5, zone="C"))

    def test_empty_scope_matches_nothing(self):
        assert not in_scope((), make_row("ITEM-1", 5))


class TestSelectorSerialization:

    def test_dict_round_trip(self):
        selector = ScopeSelector(
            warehouse="WH1", zone="A", location_prefix="A-", item_codes=("I1", "I2"),
        )
        assert ScopeSelector.from_dict(selector.to_dict()) == selector

    def test_from_dict_tolerates_missing_keys(self):
        assert ScopeSelector.from_dict({"zone": "A"}) == ScopeSelector(zone="A")


# =============================================================================
# Lifecycle
# =============================================================================


class TestPlanTransitions:

    def test_draft_to_active_to_closed(self):
        assert PlanStatus.ACTIVE in PLAN_TRANSITIONS[PlanStatus.DRAFT]
        assert PlanStatus.CLOSED in PLAN_TRANSITIONS[PlanStatus.ACTIVE]

    def test_closed_is_terminal(self):
        assert PLAN_TRANSITIONS[PlanStatus.CLOSED] == frozenset()

    def test_draft_cannot_close_directly(self):
        assert PlanStatus.CLOSED not in PLAN_TRANSITIONS[PlanStatus.DRAFT]


class TestCadence:

    def _plan(self, cadence: Cadence, interval_days=None) -> CountPlan:
        now = datetime(2024, 1, 1, tzinfo=UTC)
        return CountPlan(
            id=uuid4(),
            code="CC1",
            name="p",
            scope=(ScopeSelector(warehouse="WH1"),),
            cadence=cadence,
            due_start=now,
            due_end=now,
            journal_size=25,
            status=PlanStatus.DRAFT,
            created_by="lead-1",
            created_at=now,
            interval_days=interval_days,
        )

    @pytest.mark.parametrize(
        "cadence,days",
        [(Cadence.DAILY, 1), (Cadence.WEEKLY, 7), (Cadence.ADHOC, None)],
    )
    def test_default_interval(self, cadence, days):
        assert self._plan(cadence).effective_interval_days == days

    def test_explicit_interval_wins(self):
        assert self._plan(Cadence.MONTHLY, interval_days=14).effective_interval_days == 14
