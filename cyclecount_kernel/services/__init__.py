"""Services for the cycle count kernel (write side)."""

from cyclecount_kernel.services.approval_workflow import ApprovalWorkflow
from cyclecount_kernel.services.count_session import CountSession, parse_quantity
from cyclecount_kernel.services.dispatch_pool import DispatchPool
from cyclecount_kernel.services.event_publisher import EventBus, EventPublisher
from cyclecount_kernel.services.journal_factory import JournalFactory
from cyclecount_kernel.services.plan_service import CountPlanManager
from cyclecount_kernel.services.reconciliation_service import ReconciliationEngine
from cyclecount_kernel.services.variance_service import VarianceService

__all__ = [
    "ApprovalWorkflow",
    "CountPlanManager",
    "CountSession",
    "DispatchPool",
    "EventBus",
    "EventPublisher",
    "JournalFactory",
    "ReconciliationEngine",
    "VarianceService",
    "parse_quantity",
]
