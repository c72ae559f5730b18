"""
Tests for the variance classification engine.

Tests cover:
- Exact matches, minor, major and critical variances under default rules
- Percent base for zero expected quantities
- Value rules skipped when the unit cost is unknown
- Skipped lines
- Rule ordering and first-match semantics
- journal_required_tier
- Determinism and range properties (hypothesis)
"""

from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from cyclecount_config import DEFAULT_CONFIG_PATH, get_active_config
from cyclecount_engines.variance import (
    classify_variance,
    journal_required_tier,
    order_rules,
    percent_delta,
    select_severity,
)
from cyclecount_kernel.domain.approval import ApprovalTier
from cyclecount_kernel.domain.variance import (
    Severity,
    SeverityRule,
    VarianceInput,
    VarianceMetric,
)

DEFAULTS = get_active_config(DEFAULT_CONFIG_PATH)
FIXED_LINE = UUID("00000000-0000-0000-0000-000000000001")


def classify(expected, counted, unit_cost=None, skipped=False, config=DEFAULTS):
    return classify_variance(
        variance_input=VarianceInput(
            line_id=FIXED_LINE,
            pass_number=1,
            expected=Decimal(str(expected)),
            counted=Decimal(str(counted)) if counted is not None else None,
            unit_cost=Decimal(str(unit_cost)) if unit_cost is not None else None,
            skipped=skipped,
        ),
        rules=config.severity_rules,
        severity_tiers=config.severity_tiers,
        skipped_line_tier=config.skipped_line_tier,
    )


# =============================================================================
# Classification under default rules
# =============================================================================


class TestDefaultClassification:

    def test_exact_match_needs_lead(self):
        result = classify(100, 100)
        assert result.severity is Severity.NONE
        assert result.required_tier is ApprovalTier.LEAD
        assert result.delta == Decimal("0")
        assert result.matched_rule is None

    def test_thirty_percent_short_is_major(self):
        result = classify(100, 70)
        assert result.delta == Decimal("-30")
        assert result.abs_delta == Decimal("30")
        assert result.percent_delta == Decimal("30.0000")
        assert result.severity is Severity.MAJOR
        assert result.required_tier is ApprovalTier.SUPERVISOR
        assert result.matched_rule == "major_percent"

    def test_half_missing_is_critical(self):
        result = classify(100, 50)
        assert result.severity is Severity.CRITICAL
        assert result.required_tier is ApprovalTier.MANAGER

    def test_one_unit_is_minor(self):
        result = classify(100, 101)
        assert result.severity is Severity.MINOR
        assert result.required_tier is ApprovalTier.LEAD
        assert result.matched_rule == "minor_absolute"

    def test_high_value_small_percent_is_critical(self):
        result = classify(1000, 990, unit_cost=150)
        assert result.percent_delta == Decimal("1.0000")
        assert result.value_delta == Decimal("1500")
        assert result.severity is Severity.CRITICAL
        assert result.matched_rule == "critical_value"

    def test_value_rule_skipped_without_cost(self):
        result = classify(1000, 990)
        assert result.value_delta is None
        assert result.severity is Severity.MINOR

    def test_zero_expected_uses_base_of_one(self):
        result = classify(0, 1)
        assert result.percent_delta == Decimal("100.0000")
        assert result.severity is Severity.CRITICAL

    def test_fractional_quantities(self):
        result = classify("10.5", "10.25")
        assert result.delta == Decimal("-0.25")
        assert result.severity is Severity.NONE


class TestSkippedLines:

    def test_skipped_line_uses_configured_tier(self):
        result = classify(100, None, skipped=True)
        assert result.skipped
        assert result.severity is Severity.NONE
        assert result.delta == Decimal("0")
        assert result.counted is None
        assert result.required_tier is ApprovalTier.SUPERVISOR

    def test_unskipped_line_without_count_is_an_error(self):
        with pytest.raises(ValueError):
            classify(100, None)


# =============================================================================
# Rule selection
# =============================================================================


class TestRuleSelection:

    def test_order_is_severity_then_configuration(self):
        rules = (
            SeverityRule("m1", Severity.MINOR, VarianceMetric.ABSOLUTE, Decimal("1")),
            SeverityRule("c1", Severity.CRITICAL, VarianceMetric.PERCENT, Decimal("50")),
            SeverityRule("c2", Severity.CRITICAL, VarianceMetric.VALUE, Decimal("10")),
            SeverityRule("j1", Severity.MAJOR, VarianceMetric.PERCENT, Decimal("20")),
        )
        assert [r.name for r in order_rules(rules)] == ["c1", "c2", "j1", "m1"]

    def test_threshold_is_inclusive(self):
        rules = (SeverityRule("j", Severity.MAJOR, VarianceMetric.PERCENT, Decimal("20")),)
        assert select_severity(rules, Decimal("20"), Decimal("20"), None) == (Severity.MAJOR, "j")

    def test_no_match_is_none(self):
        rules = (SeverityRule("j", Severity.MAJOR, VarianceMetric.PERCENT, Decimal("20")),)
        assert select_severity(rules, Decimal("1"), Decimal("1"), None) == (Severity.NONE, None)

    def test_percent_quantized_half_up(self):
        assert percent_delta(Decimal("1"), Decimal("3")) == Decimal("33.3333")
        assert percent_delta(Decimal("2"), Decimal("3")) == Decimal("66.6667")

    def test_missing_tier_mapping_raises(self):
        with pytest.raises(ValueError):
            classify_variance(
                variance_input=VarianceInput(uuid4(), 1, Decimal("10"), Decimal("5")),
                rules=DEFAULTS.severity_rules,
                severity_tiers={Severity.NONE: ApprovalTier.LEAD},
                skipped_line_tier=ApprovalTier.SUPERVISOR,
            )


class TestJournalRequiredTier:

    def test_highest_line_tier_wins(self):
        assert journal_required_tier(
            [ApprovalTier.LEAD, ApprovalTier.MANAGER, ApprovalTier.SUPERVISOR]
        ) is ApprovalTier.MANAGER

    def test_empty_journal_needs_lead(self):
        assert journal_required_tier([]) is ApprovalTier.LEAD


# =============================================================================
# Properties
# =============================================================================

quantities = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("100000"), places=4,
    allow_nan=False, allow_infinity=False,
)
costs = st.none() | st.decimals(
    min_value=Decimal("0"), max_value=Decimal("5000"), places=2,
    allow_nan=False, allow_infinity=False,
)


class TestVarianceProperties:

    @given(expected=quantities, counted=quantities, unit_cost=costs)
    @settings(max_examples=200, deadline=None)
    def test_deterministic(self, expected, counted, unit_cost):
        assert classify(expected, counted, unit_cost) == classify(expected, counted, unit_cost)

    @given(expected=quantities, counted=quantities, unit_cost=costs)
    @settings(max_examples=200, deadline=None)
    def test_delta_and_tier_consistent(self, expected, counted, unit_cost):
        result = classify(expected, counted, unit_cost)
        assert result.delta == result.counted - result.expected
        assert result.abs_delta >= 0
        assert result.percent_delta >= 0
        assert result.required_tier is DEFAULTS.severity_tiers[result.severity]

    @given(expected=quantities)
    @settings(max_examples=100, deadline=None)
    def test_exact_count_never_escalates(self, expected):
        result = classify(expected, expected, unit_cost=Decimal("999"))
        assert result.severity is Severity.NONE
        assert result.required_tier is ApprovalTier.LEAD
