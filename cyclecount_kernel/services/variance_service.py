"""
VarianceService -- persist variance classifications.

Responsibility:
    Runs the pure variance engine over journal lines and upserts one
    VarianceRecord per (line, pass).  Recomputing a pass replaces its
    record in place; records of earlier passes stay as history.

Architecture position:
    Kernel > Services.  Called by CountSession.submit inside the submit
    transaction, so a Submitted journal always has its records.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from cyclecount_engines.variance import classify_variance, journal_required_tier
from cyclecount_kernel.domain.approval import ApprovalTier
from cyclecount_kernel.domain.clock import Clock
from cyclecount_kernel.domain.journal import LineStatus
from cyclecount_kernel.domain.variance import VarianceInput, VarianceRecord
from cyclecount_kernel.logging_config import get_logger
from cyclecount_kernel.models.journal import JournalLineModel
from cyclecount_kernel.models.variance import VarianceRecordModel
from cyclecount_kernel.selectors.journal_selector import JournalSelector
from cyclecount_kernel.services.base import BaseService

if TYPE_CHECKING:
    from cyclecount_config.schema import CycleCountConfig

logger = get_logger("services.variance")


class VarianceService(BaseService):

    def __init__(self, session: Session, config: CycleCountConfig, clock: Clock | None = None):
        super().__init__(session, clock)
        self._config = config
        self._journals = JournalSelector(session)

    def compute_for_lines(
        self, journal_id: UUID, lines: Iterable[JournalLineModel]
    ) -> list[VarianceRecord]:
        now = self._clock.now()
        records: list[VarianceRecord] = []
        for line in lines:
            skipped = line.status == LineStatus.SKIPPED.value
            result = classify_variance(
                variance_input=VarianceInput(
                    line_id=line.id,
                    pass_number=line.pass_number,
                    expected=line.expected_quantity,
                    counted=None if skipped else line.counted_quantity,
                    unit_cost=line.unit_cost,
                    skipped=skipped,
                ),
                rules=self._config.severity_rules,
                severity_tiers=self._config.severity_tiers,
                skipped_line_tier=self._config.skipped_line_tier,
            )

            model = self.session.execute(
                select(VarianceRecordModel).where(
                    VarianceRecordModel.line_id == line.id,
                    VarianceRecordModel.pass_number == line.pass_number,
                )
            ).scalar_one_or_none()
            if model is None:
                model = VarianceRecordModel(
                    journal_id=journal_id,
                    line_id=line.id,
                    pass_number=line.pass_number,
                )
                self.session.add(model)
            model.expected = result.expected
            model.counted = result.counted
            model.delta = result.delta
            model.abs_delta = result.abs_delta
            model.percent_delta = result.percent_delta
            model.value_delta = result.value_delta
            model.severity = result.severity.value
            model.required_tier = int(result.required_tier)
            model.matched_rule = result.matched_rule
            model.skipped = result.skipped
            model.computed_at = now
            self.session.flush()
            records.append(model.to_dto())

            logger.debug(
                "variance_recorded",
                extra={
                    "line_id": str(line.id),
                    "pass_number": line.pass_number,
                    "severity": result.severity.value,
                    "required_tier": result.required_tier.label,
                },
            )
        return records

    def journal_tier(self, journal_id: UUID) -> ApprovalTier:
        """Highest required tier over every line's current-pass record."""
        current = self._journals.variance_records(journal_id, current_only=True)
        return journal_required_tier(r.required_tier for r in current)
