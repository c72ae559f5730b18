"""ORM models for the cycle count kernel."""

from cyclecount_kernel.models.approval import ApprovalDecisionModel
from cyclecount_kernel.models.event import CountEventModel
from cyclecount_kernel.models.journal import (
    CountPassModel,
    JournalLineModel,
    JournalModel,
)
from cyclecount_kernel.models.plan import CountPlanModel
from cyclecount_kernel.models.reconciliation import (
    ReconciliationBatchModel,
    ReconciliationEntryModel,
)
from cyclecount_kernel.models.variance import VarianceRecordModel


def import_all_models() -> tuple[type, ...]:
    """Return every model class; importing this package registers the tables."""
    return (
        CountPlanModel,
        JournalModel,
        JournalLineModel,
        CountPassModel,
        VarianceRecordModel,
        ApprovalDecisionModel,
        ReconciliationBatchModel,
        ReconciliationEntryModel,
        CountEventModel,
    )


__all__ = [
    "ApprovalDecisionModel",
    "CountEventModel",
    "CountPassModel",
    "CountPlanModel",
    "JournalLineModel",
    "JournalModel",
    "ReconciliationBatchModel",
    "ReconciliationEntryModel",
    "VarianceRecordModel",
    "import_all_models",
]
