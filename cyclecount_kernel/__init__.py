"""
Cycle Count Kernel

The journal lifecycle and approval-escalation engine for warehouse
cycle counts:
- Single-claimant dispatch with leases
- Idempotent per-pass count recording
- Deterministic variance classification
- Role-gated multi-tier approval and recount routing
- Exactly-once reconciliation into inventory adjustments
"""

__version__ = "0.1.0"
