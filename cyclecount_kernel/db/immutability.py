"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The audit trail of a cycle count is only useful if it cannot be rewritten:
a frozen count pass, a recorded approval decision or a reconciliation
batch that later changes would make every downstream adjustment
unexplainable.

SQLAlchemy fires events before UPDATE/DELETE operations reach the
database.  This module registers listeners that check the rules below and
raise ImmutabilityViolationError, aborting the flush:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
         |
    [before_delete] --> _block_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | When Immutable                 | Mutable fields
-----------------------|--------------------------------|----------------------
CountPlan              | Once status leaves draft       | status, activated_at,
                       |                                | closed_at, close_reason
JournalLine            | expected_quantity always       | everything else
CountPass              | ALWAYS (from creation)         | none
ApprovalDecision       | ALWAYS (from creation)         | none
ReconciliationBatch    | ALWAYS (from creation)         | none
ReconciliationEntry    | ALWAYS (from creation)         | none
CountEvent             | ALWAYS (from creation)         | none

===============================================================================
USAGE
===============================================================================

Called once at startup (CycleCountEngine.bootstrap and the test fixtures):

    from cyclecount_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from cyclecount_kernel.exceptions import ImmutabilityViolationError
from cyclecount_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_PLAN_STATUS_FIELDS = frozenset({"status", "activated_at", "closed_at", "close_reason"})


def _violation(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_fields(mapper, target) -> set[str]:
    changed = set()
    for attr in mapper.column_attrs:
        if get_history(target, attr.key).has_changes():
            changed.add(attr.key)
    return changed


def _check_plan_immutability(mapper, connection, target):
    """
    Only status fields may change once a plan has left draft.

    The Draft -> Active transition itself is allowed: the persisted status
    (history.deleted) is what decides, not the new value.
    """
    status_history = get_history(target, "status")
    if status_history.deleted:
        previous_status = status_history.deleted[0]
    elif status_history.unchanged:
        previous_status = status_history.unchanged[0]
    else:
        previous_status = target.status

    if previous_status == "draft":
        return

    illegal = _changed_fields(mapper, target) - _PLAN_STATUS_FIELDS
    if illegal:
        raise _violation(
            "CountPlan",
            target.id,
            "UPDATE",
            f"Plan is {previous_status}; cannot modify {sorted(illegal)}",
        )


def _check_line_expected_quantity(mapper, connection, target):
    """Expected quantity is frozen from the snapshot at journal creation."""
    history = get_history(target, "expected_quantity")
    if history.deleted and history.added and history.deleted[0] != history.added[0]:
        raise _violation(
            "JournalLine",
            target.id,
            "UPDATE",
            "Expected quantity is frozen at journal creation",
        )


def _block_update(entity_type: str):
    def _listener(mapper, connection, target):
        raise _violation(
            entity_type, target.id, "UPDATE", f"{entity_type} records are immutable"
        )

    _listener.__name__ = f"_block_{entity_type.lower()}_update"
    return _listener


def _block_delete(entity_type: str):
    def _listener(mapper, connection, target):
        raise _violation(
            entity_type, target.id, "DELETE", f"{entity_type} records are immutable"
        )

    _listener.__name__ = f"_block_{entity_type.lower()}_delete"
    return _listener


_APPEND_ONLY: dict[str, tuple] = {
    name: (_block_update(name), _block_delete(name))
    for name in (
        "CountPass",
        "ApprovalDecision",
        "ReconciliationBatch",
        "ReconciliationEntry",
        "CountEvent",
    )
}


def _listener_table():
    from cyclecount_kernel.models import (
        ApprovalDecisionModel,
        CountEventModel,
        CountPassModel,
        CountPlanModel,
        JournalLineModel,
        ReconciliationBatchModel,
        ReconciliationEntryModel,
    )

    table = [
        (CountPlanModel, "before_update", _check_plan_immutability),
        (JournalLineModel, "before_update", _check_line_expected_quantity),
    ]
    for model, name in (
        (CountPassModel, "CountPass"),
        (ApprovalDecisionModel, "ApprovalDecision"),
        (ReconciliationBatchModel, "ReconciliationBatch"),
        (ReconciliationEntryModel, "ReconciliationEntry"),
        (CountEventModel, "CountEvent"),
    ):
        on_update, on_delete = _APPEND_ONLY[name]
        table.append((model, "before_update", on_update))
        table.append((model, "before_delete", on_delete))
    return table


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that must bypass the rules to construct
    corrupted state on purpose.
    """
    for target, event_name, listener_fn in _listener_table():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
