"""
CountSession -- recording counts and submitting journals.

Responsibility:
    Accepts counted quantities and skip decisions from the operator who
    holds a journal, and submits the journal for review.  Submission
    freezes the open pass into CountPass history and computes every
    scoped line's variance in the same transaction.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Only the live-lease holder writes counts.
    - Only lines in the open pass accept counts; a frozen (line, pass) is
      out of scope until a reviewer requests a recount.
    - Re-recording before submission overwrites the pending value and
      leaves no history.
    - Submission requires every scoped line to be Counted or Skipped.
    - No window exists in which a Submitted journal lacks variance records.

Failure modes:
    - LineNotFoundError, LineNotOwnedByClaimantError, InvalidQuantityError,
      InvalidEvidenceError, InvalidSkipReasonError, NotOwnerError,
      IncompleteLinesError.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy.orm import Session

from cyclecount_engines.eligibility import lease_lapsed
from cyclecount_kernel.db.base import QUANTITY_INTEGER_DIGITS, QUANTITY_SCALE
from cyclecount_kernel.domain.clock import Clock
from cyclecount_kernel.domain.events import EventType
from cyclecount_kernel.domain.journal import (
    HELD_JOURNAL_STATUSES,
    OPEN_LINE_STATUSES,
    Evidence,
    Journal,
    JournalLine,
    JournalStatus,
    LineStatus,
)
from cyclecount_kernel.exceptions import (
    IncompleteLinesError,
    InvalidEvidenceError,
    InvalidQuantityError,
    InvalidSkipReasonError,
    LineNotFoundError,
    LineNotOwnedByClaimantError,
    NotOwnerError,
)
from cyclecount_kernel.logging_config import get_logger
from cyclecount_kernel.models.journal import CountPassModel, JournalLineModel, JournalModel
from cyclecount_kernel.selectors.journal_selector import JournalSelector
from cyclecount_kernel.services.base import JournalServiceBase
from cyclecount_kernel.services.event_publisher import EventPublisher
from cyclecount_kernel.services.variance_service import VarianceService

if TYPE_CHECKING:
    from cyclecount_config.schema import CycleCountConfig

logger = get_logger("services.count_session")


def parse_quantity(value: Any) -> Decimal:
    """
    Parse an operator-entered quantity.

    Accepts int, Decimal, float and numeric strings.  Floats are converted
    through their string form so 0.1 stays 0.1.

    Raises:
        InvalidQuantityError: bool, non-numeric, NaN/infinite, negative,
            more than four decimal places, or more than fourteen integer
            digits (the NUMERIC(18, 4) column limit).
    """
    if isinstance(value, bool):
        raise InvalidQuantityError(repr(value), "not_numeric")
    if isinstance(value, Decimal):
        quantity = value
    elif isinstance(value, int):
        quantity = Decimal(value)
    elif isinstance(value, float):
        quantity = Decimal(str(value))
    elif isinstance(value, str):
        try:
            quantity = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidQuantityError(repr(value), "not_numeric") from None
    else:
        raise InvalidQuantityError(repr(value), "not_numeric")

    if not quantity.is_finite():
        raise InvalidQuantityError(repr(value), "not_finite")
    if quantity < 0:
        raise InvalidQuantityError(repr(value), "negative")
    if quantity and quantity.adjusted() >= QUANTITY_INTEGER_DIGITS:
        raise InvalidQuantityError(repr(value), "too_large")
    if quantity.normalize().as_tuple().exponent < -QUANTITY_SCALE:
        raise InvalidQuantityError(repr(value), "too_many_decimal_places")
    return quantity


def _coerce_evidence(evidence: Evidence | dict[str, Any] | None) -> Evidence:
    if evidence is None:
        return Evidence()
    if isinstance(evidence, Evidence):
        return evidence
    return Evidence.from_dict(evidence)


class CountSession(JournalServiceBase):
    """Operator-side counting operations."""

    def __init__(
        self,
        session: Session,
        config: CycleCountConfig,
        events: EventPublisher,
        variance: VarianceService,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._config = config
        self._events = events
        self._variance = variance
        self._journals = JournalSelector(session)

    def record_count(
        self,
        line_id: UUID,
        operator_id: str,
        quantity: Any,
        evidence: Evidence | dict[str, Any] | None = None,
    ) -> JournalLine:
        model, line = self._load_line_for_count(line_id, operator_id)
        counted = parse_quantity(quantity)
        captured = _coerce_evidence(evidence)
        self._validate_evidence(line, counted, captured)

        now = self._clock.now()
        line.counted_quantity = counted
        line.evidence = captured.to_dict()
        line.status = LineStatus.COUNTED.value
        line.skip_reason = None
        line.counted_by = operator_id
        line.counted_at = now
        self._start_counting(model)
        self._touch(model)
        self._flush_journal(model)

        self._events.emit(
            EventType.LINE_COUNTED,
            actor_id=operator_id,
            journal_id=model.id,
            plan_id=model.plan_id,
            payload={
                "line_id": line.id,
                "pass_number": line.pass_number,
                "counted_quantity": counted,
                "serial_count": len(captured.serial_numbers),
            },
        )
        logger.info(
            "line_counted",
            extra={
                "journal_id": str(model.id),
                "line_id": str(line.id),
                "pass_number": line.pass_number,
                "operator_id": operator_id,
            },
        )
        return line.to_dto()

    def skip_line(self, line_id: UUID, operator_id: str, reason: str) -> JournalLine:
        if reason is None or not str(reason).strip():
            raise InvalidSkipReasonError(str(line_id))
        model, line = self._load_line_for_count(line_id, operator_id)

        line.counted_quantity = None
        line.evidence = {}
        line.status = LineStatus.SKIPPED.value
        line.skip_reason = str(reason).strip()
        line.counted_by = operator_id
        line.counted_at = self._clock.now()
        self._start_counting(model)
        self._touch(model)
        self._flush_journal(model)

        self._events.emit(
            EventType.LINE_SKIPPED,
            actor_id=operator_id,
            journal_id=model.id,
            plan_id=model.plan_id,
            payload={
                "line_id": line.id,
                "pass_number": line.pass_number,
                "reason": line.skip_reason,
            },
        )
        logger.info(
            "line_skipped",
            extra={
                "journal_id": str(model.id),
                "line_id": str(line.id),
                "operator_id": operator_id,
            },
        )
        return line.to_dto()

    def submit(self, journal_id: UUID, operator_id: str) -> Journal:
        """
        Submit the open pass for review.

        Postconditions:
            - One CountPass per scoped line, frozen at ``now``.
            - One VarianceRecord per scoped line for its current pass.
            - ``required_tier`` is the highest tier over all lines.
            - ``review_round`` incremented; the claim is cleared.
        """
        model = self._load_journal_for_update(journal_id)
        now = self._clock.now()
        if not self._holds_live_lease(model, operator_id):
            raise NotOwnerError(str(journal_id), operator_id, model.assigned_operator)

        frozen = self._journals.frozen_passes(model.id)
        scoped = [line for line in model.lines if (line.id, line.pass_number) not in frozen]
        incomplete = tuple(
            str(line.id) for line in scoped if LineStatus(line.status) in OPEN_LINE_STATUSES
        )
        if incomplete:
            logger.warning(
                "submit_incomplete",
                extra={"journal_id": str(journal_id), "open_lines": len(incomplete)},
            )
            raise IncompleteLinesError(str(journal_id), incomplete)

        for line in scoped:
            skipped = line.status == LineStatus.SKIPPED.value
            self.session.add(
                CountPassModel(
                    line_id=line.id,
                    journal_id=model.id,
                    pass_number=line.pass_number,
                    counted_quantity=None if skipped else line.counted_quantity,
                    skipped=skipped,
                    skip_reason=line.skip_reason if skipped else None,
                    evidence=dict(line.evidence or {}),
                    counted_by=line.counted_by or operator_id,
                    counted_at=line.counted_at or now,
                    frozen_at=now,
                )
            )
        self._variance.compute_for_lines(model.id, scoped)
        tier = self._variance.journal_tier(model.id)

        self._transition(model, JournalStatus.SUBMITTED, "submit")
        model.required_tier = int(tier)
        model.review_round += 1
        model.last_operator = operator_id
        model.assigned_operator = None
        model.claimed_at = None
        model.lease_expires_at = None
        self._touch(model)
        self._flush_journal(model)

        self._events.emit(
            EventType.JOURNAL_SUBMITTED,
            actor_id=operator_id,
            journal_id=model.id,
            plan_id=model.plan_id,
            payload={
                "review_round": model.review_round,
                "required_tier": tier.label,
                "scoped_lines": len(scoped),
            },
        )
        logger.info(
            "journal_submitted",
            extra={
                "journal_id": str(journal_id),
                "operator_id": operator_id,
                "review_round": model.review_round,
                "required_tier": tier.label,
                "scoped_lines": len(scoped),
            },
        )
        return model.to_dto()

    # -- internals ---------------------------------------------------------

    def _holds_live_lease(self, model: JournalModel, operator_id: str) -> bool:
        return (
            JournalStatus(model.status) in HELD_JOURNAL_STATUSES
            and model.assigned_operator == operator_id
            and not lease_lapsed(model.lease_expires_at, self._clock.now())
        )

    def _load_line_for_count(
        self, line_id: UUID, operator_id: str
    ) -> tuple[JournalModel, JournalLineModel]:
        journal_id = self._journals.journal_id_for_line(line_id)
        if journal_id is None:
            raise LineNotFoundError(str(line_id))
        model = self._load_journal_for_update(journal_id)
        line = next((ln for ln in model.lines if ln.id == line_id), None)
        if line is None:
            raise LineNotFoundError(str(line_id))

        if not self._holds_live_lease(model, operator_id):
            raise LineNotOwnedByClaimantError(str(line_id), operator_id, "no_live_lease")
        if (line.id, line.pass_number) in self._journals.frozen_passes(model.id):
            raise LineNotOwnedByClaimantError(
                str(line_id), operator_id, "line_not_in_counting_scope"
            )
        return model, line

    def _validate_evidence(
        self, line: JournalLineModel, counted: Decimal, evidence: Evidence
    ) -> None:
        serials = evidence.serial_numbers
        if len(set(serials)) != len(serials):
            raise InvalidEvidenceError(str(line.id), "duplicate_serial_numbers")
        if len(serials) > self._config.max_serials_per_line:
            raise InvalidEvidenceError(str(line.id), "too_many_serial_numbers")
        if line.serial_required:
            if counted != counted.to_integral_value():
                raise InvalidEvidenceError(str(line.id), "serialized_quantity_not_integral")
            if len(serials) != int(counted):
                raise InvalidEvidenceError(str(line.id), "serial_count_mismatch")

    def _start_counting(self, model: JournalModel) -> None:
        if model.status == JournalStatus.ASSIGNED.value:
            self._transition(model, JournalStatus.IN_PROGRESS, "record_count")
