"""
cyclecount_engines.variance -- Pure variance classification engine.

Responsibility:
    Compute the delta between a counted and an expected quantity, classify
    it into a severity with the configured rules, and map the severity to
    the approval tier that must sign off.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import cyclecount_kernel/domain types.

Invariants enforced:
    - Determinism: identical inputs always produce identical results.
      No clock access, no I/O.
    - Rule ordering: highest severity first, configuration order within a
      severity; first rule whose metric >= threshold wins; no match -> NONE.
    - ``value`` rules are skipped when the unit cost is unknown.
    - percent = |delta| / max(expected, 1) * 100, quantized to 4 places.
    - Skipped lines carry severity NONE, delta 0 and the configured
      ``skipped_line_tier``.

Failure modes:
    - ValueError when a non-skipped input has no counted quantity, or a
      severity is missing from the tier mapping.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from decimal import ROUND_HALF_UP, Decimal

from cyclecount_engines.tracer import traced_engine
from cyclecount_kernel.domain.approval import ApprovalTier
from cyclecount_kernel.domain.variance import (
    Severity,
    SeverityRule,
    VarianceInput,
    VarianceMetric,
    VarianceResult,
)

_PERCENT_QUANTUM = Decimal("0.0001")
_ONE = Decimal("1")
_HUNDRED = Decimal("100")
_ZERO = Decimal("0")


def order_rules(rules: Iterable[SeverityRule]) -> tuple[SeverityRule, ...]:
    """Evaluation order: highest severity first, stable within a severity."""
    indexed = list(enumerate(rules))
    indexed.sort(key=lambda pair: (-pair[1].severity.rank, pair[0]))
    return tuple(rule for _, rule in indexed)


def percent_delta(abs_delta: Decimal, expected: Decimal) -> Decimal:
    base = expected if expected > _ONE else _ONE
    return (abs_delta / base * _HUNDRED).quantize(_PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


def _metric_value(
    metric: VarianceMetric,
    abs_delta: Decimal,
    pct: Decimal,
    value: Decimal | None,
) -> Decimal | None:
    if metric is VarianceMetric.PERCENT:
        return pct
    if metric is VarianceMetric.ABSOLUTE:
        return abs_delta
    return value


def select_severity(
    rules: Sequence[SeverityRule],
    abs_delta: Decimal,
    pct: Decimal,
    value: Decimal | None,
) -> tuple[Severity, str | None]:
    """First matching rule in evaluation order, or (NONE, None)."""
    for rule in order_rules(rules):
        measured = _metric_value(rule.metric, abs_delta, pct, value)
        if measured is None:
            continue
        if measured >= rule.threshold:
            return rule.severity, rule.name
    return Severity.NONE, None


@traced_engine("variance", "1.0", fingerprint_fields=("variance_input",))
def classify_variance(
    *,
    variance_input: VarianceInput,
    rules: Sequence[SeverityRule],
    severity_tiers: Mapping[Severity, ApprovalTier],
    skipped_line_tier: ApprovalTier,
) -> VarianceResult:
    """Classify one line pass."""
    vi = variance_input

    if vi.skipped:
        return VarianceResult(
            line_id=vi.line_id,
            pass_number=vi.pass_number,
            expected=vi.expected,
            counted=None,
            delta=_ZERO,
            abs_delta=_ZERO,
            percent_delta=_ZERO.quantize(_PERCENT_QUANTUM),
            value_delta=None,
            severity=Severity.NONE,
            required_tier=skipped_line_tier,
            matched_rule=None,
            skipped=True,
        )

    if vi.counted is None:
        raise ValueError(f"Line {vi.line_id} pass {vi.pass_number} has no counted quantity")

    delta = vi.counted - vi.expected
    abs_delta = abs(delta)
    pct = percent_delta(abs_delta, vi.expected)
    value = abs_delta * vi.unit_cost if vi.unit_cost is not None else None

    severity, rule_name = select_severity(rules, abs_delta, pct, value)
    if severity not in severity_tiers:
        raise ValueError(f"No approval tier configured for severity {severity.value}")

    return VarianceResult(
        line_id=vi.line_id,
        pass_number=vi.pass_number,
        expected=vi.expected,
        counted=vi.counted,
        delta=delta,
        abs_delta=abs_delta,
        percent_delta=pct,
        value_delta=value,
        severity=severity,
        required_tier=severity_tiers[severity],
        matched_rule=rule_name,
        skipped=False,
    )


def journal_required_tier(tiers: Iterable[ApprovalTier]) -> ApprovalTier:
    """The journal needs the highest tier any of its lines needs."""
    tiers = tuple(tiers)
    if not tiers:
        return ApprovalTier.LEAD
    return max(tiers)
