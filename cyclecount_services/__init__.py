"""
cyclecount_services -- Package init and public API.

Responsibility:
    Orchestration over the kernel: the per-session DI container and the
    transactional facade that owns commit/rollback.

Architecture position:
    Services -- outermost layer.

    Dependency direction:
        cyclecount_services/ -> cyclecount_engines/  (allowed)
        cyclecount_services/ -> cyclecount_kernel/   (allowed)
        cyclecount_services/ -> cyclecount_config/   (allowed)
        cyclecount_kernel/   -> cyclecount_services/ (FORBIDDEN)
        cyclecount_engines/  -> cyclecount_services/ (FORBIDDEN)

Invariants enforced:
    - DI transparency: all kernel service wiring lives in
      CycleCountOrchestrator.
"""

from cyclecount_services.engine import CycleCountEngine
from cyclecount_services.orchestrator import CycleCountOrchestrator

__all__ = [
    "CycleCountEngine",
    "CycleCountOrchestrator",
]
