"""
JournalFactory -- split an Active plan's scope into counting journals.

Responsibility:
    Consumes an ``InventorySnapshot`` once, keeps the rows the plan scope
    selects, groups them by target location and chunks each location by
    the plan's journal size.  Expected quantities are copied from the
    snapshot at this point and never re-queried.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - One target location per journal.
    - Lines ordered by item code and numbered from 1 within the journal.
    - Journals may be generated once per plan; the plan row is locked
      while generating so a concurrent second call sees the first result.

Failure modes:
    - PlanNotFoundError, InvalidPlanTransitionError (plan not Active),
      JournalsAlreadyGeneratedError, InvalidPlanError (duplicate rows).
"""

from __future__ import annotations

from collections import defaultdict
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cyclecount_kernel.domain.clock import Clock
from cyclecount_kernel.domain.events import EventType
from cyclecount_kernel.domain.journal import Journal, JournalStatus, LineStatus
from cyclecount_kernel.domain.plan import PlanStatus, in_scope
from cyclecount_kernel.domain.snapshot import InventorySnapshot, SnapshotRow
from cyclecount_kernel.exceptions import (
    InvalidPlanError,
    InvalidPlanTransitionError,
    JournalsAlreadyGeneratedError,
    PlanNotFoundError,
)
from cyclecount_kernel.logging_config import get_logger
from cyclecount_kernel.models.journal import JournalLineModel, JournalModel
from cyclecount_kernel.models.plan import CountPlanModel
from cyclecount_kernel.services.base import BaseService
from cyclecount_kernel.services.event_publisher import EventPublisher

logger = get_logger("services.journal_factory")


def _single_or_none(values) -> str | None:
    distinct = {v for v in values if v is not None}
    if len(distinct) == 1:
        return next(iter(distinct))
    return None


def _chunk(rows: list[SnapshotRow], size: int) -> list[list[SnapshotRow]]:
    return [rows[i:i + size] for i in range(0, len(rows), size)]


class JournalFactory(BaseService):
    """Generates Pending journals for an Active plan."""

    def __init__(self, session: Session, events: EventPublisher, clock: Clock | None = None):
        super().__init__(session, clock)
        self._events = events

    def generate_journals(
        self,
        plan_id: UUID,
        snapshot: InventorySnapshot,
        actor_id: str = "system",
    ) -> tuple[Journal, ...]:
        plan_model = self.session.execute(
            select(CountPlanModel)
            .where(CountPlanModel.id == plan_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if plan_model is None:
            raise PlanNotFoundError(str(plan_id))
        if plan_model.status != PlanStatus.ACTIVE.value:
            raise InvalidPlanTransitionError(str(plan_id), plan_model.status, "generate_journals")

        existing = self.session.execute(
            select(func.count(JournalModel.id)).where(JournalModel.plan_id == plan_id)
        ).scalar_one()
        if existing:
            raise JournalsAlreadyGeneratedError(str(plan_id), existing)

        plan = plan_model.to_dto()
        by_location: dict[tuple[str, str], list[SnapshotRow]] = defaultdict(list)
        seen: set[tuple[str, str, str]] = set()
        for row in snapshot.rows:
            if not in_scope(plan.scope, row):
                continue
            key = (row.warehouse, row.location_code, row.item_code)
            if key in seen:
                raise InvalidPlanError(
                    f"snapshot {snapshot.snapshot_id} lists {row.item_code} at "
                    f"{row.warehouse}/{row.location_code} more than once"
                )
            seen.add(key)
            by_location[(row.warehouse, row.location_code)].append(row)

        if not by_location:
            logger.warning(
                "no_rows_in_scope",
                extra={"plan_id": str(plan_id), "snapshot_id": snapshot.snapshot_id},
            )
            return ()

        now = self._clock.now()
        models: list[JournalModel] = []
        seq = 0
        for (warehouse, location_code) in sorted(by_location):
            rows = sorted(by_location[(warehouse, location_code)], key=lambda r: r.item_code)
            for chunk in _chunk(rows, plan.journal_size):
                seq += 1
                skills = sorted({s for r in chunk for s in r.required_skills})
                journal = JournalModel(
                    id=uuid4(),
                    journal_number=f"{plan.code}-{seq:04d}",
                    plan_id=plan_id,
                    location_code=location_code,
                    warehouse=warehouse,
                    zone=_single_or_none(r.zone for r in chunk),
                    required_skills=skills,
                    shift=_single_or_none(r.shift for r in chunk),
                    status=JournalStatus.PENDING.value,
                    review_round=0,
                    created_at=now,
                    last_activity_at=now,
                )
                journal.lines = [
                    JournalLineModel(
                        id=uuid4(),
                        sequence_number=n,
                        location_code=location_code,
                        item_code=row.item_code,
                        unit_cost=row.unit_cost,
                        serial_required=row.serial_required,
                        expected_quantity=row.on_hand,
                        evidence={},
                        status=LineStatus.UNCOUNTED.value,
                        pass_number=1,
                    )
                    for n, row in enumerate(chunk, start=1)
                ]
                self.session.add(journal)
                models.append(journal)

        self.session.flush()

        for journal in models:
            self._events.emit(
                EventType.JOURNAL_CREATED,
                actor_id=actor_id,
                journal_id=journal.id,
                plan_id=plan_id,
                payload={
                    "journal_number": journal.journal_number,
                    "location_code": journal.location_code,
                    "line_count": len(journal.lines),
                    "snapshot_id": snapshot.snapshot_id,
                },
            )

        logger.info(
            "journals_generated",
            extra={
                "plan_id": str(plan_id),
                "snapshot_id": snapshot.snapshot_id,
                "journal_count": len(models),
                "line_count": sum(len(m.lines) for m in models),
            },
        )
        return tuple(m.to_dto() for m in models)
