"""
Tests for operator counting and submission.

Tests cover:
- parse_quantity acceptance and rejection reasons, including the column magnitude bound
- record_count: status changes, evidence validation, events
- skip_line with and without a reason
- submit: incomplete lines, frozen passes, variance records, required tier
- Counting outside the claimant's lease
"""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from cyclecount_kernel.db.engine import get_session_factory
from cyclecount_kernel.domain.approval import ApprovalTier
from cyclecount_kernel.domain.events import EventType
from cyclecount_kernel.domain.journal import Evidence, JournalStatus, LineStatus
from cyclecount_kernel.domain.variance import Severity
from cyclecount_kernel.exceptions import (
    IncompleteLinesError,
    InvalidEvidenceError,
    InvalidQuantityError,
    InvalidSkipReasonError,
    LineNotFoundError,
    LineNotOwnedByClaimantError,
    NotOwnerError,
)
from cyclecount_kernel.services.count_session import parse_quantity
from cyclecount_services import CycleCountEngine
from tests.conftest import LEAD, default_scope, make_operator, make_row, make_snapshot

OP1 = make_operator("op-1")


@pytest.fixture
def claimed_journal(create_journal, cycle_engine):
    def _claim(*rows):
        journal = create_journal(*rows)
        cycle_engine.claim(journal.id, OP1)
        return journal

    return _claim


# =============================================================================
# parse_quantity
# =============================================================================


class TestParseQuantity:

    @pytest.mark.parametrize(
        "value,expected",
        [
            (5, Decimal("5")),
            ("12.5", Decimal("12.5")),
            (" 3 ", Decimal("3")),
            (0.1, Decimal("0.1")),
            (Decimal("1.2345"), Decimal("1.2345")),
            ("1.50000", Decimal("1.50000")),
            (0, Decimal("0")),
            ("99999999999999.9999", Decimal("99999999999999.9999")),
        ],
    )
    def test_accepted(self, value, expected):
        assert parse_quantity(value) == expected

    @pytest.mark.parametrize(
        "value,reason",
        [
            ("abc", "not_numeric"),
            (None, "not_numeric"),
            (True, "not_numeric"),
            ("NaN", "not_finite"),
            (float("inf"), "not_finite"),
            (-1, "negative"),
            ("1.23456", "too_many_decimal_places"),
            ("123456789012345.6789", "too_large"),
            (10**14, "too_large"),
            ("1E+20", "too_large"),
        ],
    )
    def test_rejected(self, value, reason):
        with pytest.raises(InvalidQuantityError) as exc_info:
            parse_quantity(value)
        assert exc_info.value.reason == reason


# =============================================================================
# record_count / skip_line
# =============================================================================


class TestRecordCount:

    def test_first_count_starts_journal(self, claimed_journal, cycle_engine, clock):
        journal = claimed_journal()
        line = cycle_engine.record_count(journal.lines[0].id, "op-1", "98")
        assert line.status is LineStatus.COUNTED
        assert line.counted_quantity == Decimal("98")
        assert line.counted_by == "op-1"
        assert line.counted_at == clock.now()
        assert cycle_engine.get_journal(journal.id).status is JournalStatus.IN_PROGRESS

    def test_recount_before_submit_overwrites(self, claimed_journal, cycle_engine):
        journal = claimed_journal()
        cycle_engine.record_count(journal.lines[0].id, "op-1", 98)
        line = cycle_engine.record_count(journal.lines[0].id, "op-1", 99)
        assert line.counted_quantity == Decimal("99")

    def test_count_event(self, claimed_journal, cycle_engine):
        journal = claimed_journal()
        cycle_engine.record_count(journal.lines[0].id, "op-1", 98)
        (event,) = cycle_engine.events(journal_id=journal.id, event_type=EventType.LINE_COUNTED)
        assert event.payload["counted_quantity"] == "98"
        assert event.payload["pass_number"] == 1

    def test_invalid_quantity_leaves_line_untouched(self, claimed_journal, cycle_engine):
        journal = claimed_journal()
        with pytest.raises(InvalidQuantityError):
            cycle_engine.record_count(journal.lines[0].id, "op-1", "-4")
        assert cycle_engine.get_journal(journal.id).lines[0].status is LineStatus.UNCOUNTED

    def test_large_quantity_stored_exactly(self, claimed_journal, cycle_engine):
        journal = claimed_journal()
        cycle_engine.record_count(journal.lines[0].id, "op-1", "12345678901234.5678")
        stored = cycle_engine.get_journal(journal.id).lines[0]
        assert stored.counted_quantity == Decimal("12345678901234.5678")

    def test_oversize_quantity_rejected(self, claimed_journal, cycle_engine):
        journal = claimed_journal()
        with pytest.raises(InvalidQuantityError) as exc_info:
            cycle_engine.record_count(journal.lines[0].id, "op-1", "123456789012345.6789")
        assert exc_info.value.reason == "too_large"
        assert cycle_engine.get_journal(journal.id).lines[0].status is LineStatus.UNCOUNTED

    def test_other_operator_rejected(self, claimed_journal, cycle_engine):
        journal = claimed_journal()
        with pytest.raises(LineNotOwnedByClaimantError) as exc_info:
            cycle_engine.record_count(journal.lines[0].id, "op-2", 1)
        assert exc_info.value.reason == "no_live_lease"

    def test_unclaimed_journal_rejected(self, create_journal, cycle_engine):
        journal = create_journal()
        with pytest.raises(LineNotOwnedByClaimantError):
            cycle_engine.record_count(journal.lines[0].id, "op-1", 1)

    def test_unknown_line(self, cycle_engine):
        with pytest.raises(LineNotFoundError):
            cycle_engine.record_count(uuid4(), "op-1", 1)


class TestEvidence:

    def test_serials_must_match_quantity(self, claimed_journal, cycle_engine):
        journal = claimed_journal(make_row("SER-1", 2, serial_required=True))
        line_id = journal.lines[0].id
        with pytest.raises(InvalidEvidenceError) as exc_info:
            cycle_engine.record_count(line_id, "op-1", 2, Evidence(serial_numbers=("S1",)))
        assert exc_info.value.reason == "serial_count_mismatch"
        line = cycle_engine.record_count(line_id, "op-1", 2, {"serial_numbers": ["S1", "S2"]})
        assert line.evidence.serial_numbers == ("S1", "S2")

    def test_serialized_quantity_must_be_whole(self, claimed_journal, cycle_engine):
        journal = claimed_journal(make_row("SER-1", 2, serial_required=True))
        with pytest.raises(InvalidEvidenceError) as exc_info:
            cycle_engine.record_count(journal.lines[0].id, "op-1", "1.5")
        assert exc_info.value.reason == "serialized_quantity_not_integral"

    def test_duplicate_serials(self, claimed_journal, cycle_engine):
        journal = claimed_journal()
        with pytest.raises(InvalidEvidenceError) as exc_info:
            cycle_engine.record_count(
                journal.lines[0].id, "op-1", 2, Evidence(serial_numbers=("S1", "S1")),
            )
        assert exc_info.value.reason == "duplicate_serial_numbers"

    def test_serial_limit(self, db_engine, cc_config, clock, bus):
        engine = CycleCountEngine(
            get_session_factory(), replace(cc_config, max_serials_per_line=2), clock, bus,
        )
        plan = engine.create_plan(
            "serials", default_scope(), "adhoc", clock.now(), clock.now() + timedelta(days=1), LEAD,
        )
        engine.activate_plan(plan.id, LEAD)
        (journal,) = engine.generate_journals(plan.id, make_snapshot(make_row("ITEM-1", 3)))
        engine.claim(journal.id, OP1)
        with pytest.raises(InvalidEvidenceError) as exc_info:
            engine.record_count(
                journal.lines[0].id, "op-1", 3, Evidence(serial_numbers=("A", "B", "C")),
            )
        assert exc_info.value.reason == "too_many_serial_numbers"

    def test_photos_and_notes_kept(self, claimed_journal, cycle_engine):
        journal = claimed_journal()
        line = cycle_engine.record_count(
            journal.lines[0].id, "op-1", 100,
            Evidence(photo_refs=("bin.jpg",), notes="shrink-wrapped"),
        )
        assert line.evidence.photo_refs == ("bin.jpg",)
        assert line.evidence.notes == "shrink-wrapped"


class TestSkipLine:

    def test_skip(self, claimed_journal, cycle_engine):
        journal = claimed_journal()
        line = cycle_engine.skip_line(journal.lines[0].id, "op-1", " rack blocked ")
        assert line.status is LineStatus.SKIPPED
        assert line.skip_reason == "rack blocked"
        assert line.counted_quantity is None

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_reason_required(self, claimed_journal, cycle_engine, reason):
        journal = claimed_journal()
        with pytest.raises(InvalidSkipReasonError):
            cycle_engine.skip_line(journal.lines[0].id, "op-1", reason)


# =============================================================================
# submit
# =============================================================================


class TestSubmit:

    def test_incomplete_lines_block_submit(self, claimed_journal, cycle_engine):
        journal = claimed_journal(make_row("I1", 1), make_row("I2", 1), make_row("I3", 1))
        cycle_engine.record_count(journal.lines[0].id, "op-1", 1)
        with pytest.raises(IncompleteLinesError) as exc_info:
            cycle_engine.submit(journal.id, "op-1")
        assert set(exc_info.value.line_ids) == {str(journal.lines[1].id), str(journal.lines[2].id)}
        assert cycle_engine.get_journal(journal.id).status is JournalStatus.IN_PROGRESS

    def test_exact_count_submits_for_lead(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 100))
        assert journal.status is JournalStatus.SUBMITTED
        assert journal.required_tier is ApprovalTier.LEAD
        assert journal.review_round == 1
        assert journal.assigned_operator is None
        assert journal.last_operator == "op-1"

        (record,) = cycle_engine.variance_records(journal.id)
        assert record.severity is Severity.NONE
        assert record.delta == Decimal("0")

    def test_major_variance_needs_supervisor(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70))
        assert journal.required_tier is ApprovalTier.SUPERVISOR
        (record,) = cycle_engine.variance_records(journal.id)
        assert record.severity is Severity.MAJOR
        assert record.percent_delta == Decimal("30")
        assert record.delta == Decimal("-30")

    def test_highest_line_tier_wins(self, submit_journal):
        journal = submit_journal((100, 100), (100, 70), (10, 2))
        assert journal.required_tier is ApprovalTier.MANAGER

    def test_skipped_line_needs_supervisor(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 100), (5, None))
        assert journal.required_tier is ApprovalTier.SUPERVISOR
        skipped = [r for r in cycle_engine.variance_records(journal.id) if r.skipped]
        assert len(skipped) == 1

    def test_count_passes_frozen(self, submit_journal, cycle_engine, clock):
        journal = submit_journal((100, 95))
        (count_pass,) = cycle_engine.count_passes(journal.lines[0].id)
        assert count_pass.pass_number == 1
        assert count_pass.counted_quantity == Decimal("95")
        assert count_pass.frozen_at == clock.now()
        assert not count_pass.skipped

    def test_submitted_lines_cannot_be_counted(self, submit_journal, cycle_engine):
        journal = submit_journal()
        with pytest.raises(LineNotOwnedByClaimantError):
            cycle_engine.record_count(journal.lines[0].id, "op-1", 1)

    def test_only_holder_submits(self, claimed_journal, cycle_engine):
        journal = claimed_journal()
        cycle_engine.record_count(journal.lines[0].id, "op-1", 100)
        with pytest.raises(NotOwnerError):
            cycle_engine.submit(journal.id, "op-2")

    def test_submit_event(self, submit_journal, cycle_engine):
        journal = submit_journal((100, 70))
        (event,) = cycle_engine.events(journal_id=journal.id, event_type=EventType.JOURNAL_SUBMITTED)
        assert event.payload["required_tier"] == "supervisor"
        assert event.payload["scoped_lines"] == 1
