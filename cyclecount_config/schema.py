"""
Configuration schema (``cyclecount_config.schema``).

Frozen dataclasses describing the runtime configuration of the cycle
count engine.  Instances are produced by ``cyclecount_config.loader`` and
handed to services as plain values.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from cyclecount_kernel.domain.approval import ApprovalTier, resolve_tier
from cyclecount_kernel.domain.variance import Severity, SeverityRule


@dataclass(frozen=True)
class CycleCountConfig:
    """
    The runtime configuration artifact.

    Contract:
        Produced only by ``get_active_config()`` (or ``parse_config`` in
        tests) after validation.

    Guarantees:
        - ``severity_tiers`` covers every Severity and is monotonic.
        - All limits are positive.
        - ``checksum`` identifies the source document.
    """

    severity_rules: tuple[SeverityRule, ...]
    severity_tiers: Mapping[Severity, ApprovalTier]
    role_tiers: Mapping[str, ApprovalTier | None]
    lease_minutes: int = 15
    max_passes: int = 3
    max_serials_per_line: int = 1000
    default_journal_size: int = 25
    skipped_line_tier: ApprovalTier = ApprovalTier.SUPERVISOR
    plan_authority_tier: ApprovalTier = ApprovalTier.LEAD
    reassign_authority_tier: ApprovalTier = ApprovalTier.LEAD
    config_id: str = "cycle_count_default"
    version: int = 1
    checksum: str = field(default="", compare=False)

    def tier_for(self, role: str) -> ApprovalTier | None:
        """Resolve an opaque role string; unknown roles have no authority."""
        return resolve_tier(role, self.role_tiers)
