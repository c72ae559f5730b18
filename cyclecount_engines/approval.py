"""
cyclecount_engines.approval -- Pure fold of a journal's decision log.

Responsibility:
    Derive a journal's approval state from its append-only decision log
    and the current per-line requirements (pass number + required tier).
    Answers: which lines are already signed off, what tier is still
    outstanding, and can a given actor approve the whole journal.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - A line Approve counts only for the pass it was recorded against and
      only when the approver's tier covers the line's required tier.  A
      recounted line therefore needs a fresh approval; untouched lines keep
      theirs across review rounds.
    - Journal approval requires every line to be covered by the actor's
      tier or by a valid line approval.
    - Escalation targets the tier above the actor, or the outstanding
      required tier when that is higher.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from uuid import UUID

from cyclecount_engines.tracer import traced_engine
from cyclecount_kernel.domain.approval import (
    ApprovalAction,
    ApprovalDecisionRecord,
    ApprovalTier,
    has_authority,
)


@dataclass(frozen=True)
class LineRequirement:
    line_id: UUID
    pass_number: int
    required_tier: ApprovalTier


@dataclass(frozen=True)
class LineApprovalState:
    line_id: UUID
    pass_number: int
    required_tier: ApprovalTier
    approved: bool
    approved_by: str | None = None


@dataclass(frozen=True)
class JournalApprovalState:
    """Folded approval state of one journal."""

    lines: tuple[LineApprovalState, ...]
    voided: bool = False
    journal_approved: bool = False
    escalation_count: int = 0
    last_escalation_target: ApprovalTier | None = None

    @property
    def outstanding_lines(self) -> tuple[LineApprovalState, ...]:
        return tuple(line for line in self.lines if not line.approved)

    @property
    def outstanding_tier(self) -> ApprovalTier | None:
        """Highest tier still required by a line without a valid approval."""
        pending = self.outstanding_lines
        if not pending:
            return None
        return max(line.required_tier for line in pending)


@traced_engine("approval_fold", "1.0", fingerprint_fields=("requirements",))
def fold_decisions(
    *,
    requirements: Sequence[LineRequirement],
    decisions: Sequence[ApprovalDecisionRecord],
) -> JournalApprovalState:
    """Fold the decision log against the current line requirements."""
    line_approvals: dict[UUID, str] = {}
    by_line: Mapping[UUID, LineRequirement] = {r.line_id: r for r in requirements}
    voided = False
    journal_approved = False
    escalations = 0
    last_target: ApprovalTier | None = None

    for decision in decisions:
        if decision.action is ApprovalAction.VOID:
            voided = True
        elif decision.action is ApprovalAction.ESCALATE:
            escalations += 1
            last_target = decision.escalation_target
        elif decision.action is ApprovalAction.APPROVE:
            if decision.line_id is None:
                journal_approved = True
                continue
            req = by_line.get(decision.line_id)
            if req is None or decision.pass_number != req.pass_number:
                continue
            if has_authority(decision.actor_tier, req.required_tier):
                line_approvals.setdefault(decision.line_id, decision.actor_id)

    lines = tuple(
        LineApprovalState(
            line_id=req.line_id,
            pass_number=req.pass_number,
            required_tier=req.required_tier,
            approved=req.line_id in line_approvals,
            approved_by=line_approvals.get(req.line_id),
        )
        for req in requirements
    )
    return JournalApprovalState(
        lines=lines,
        voided=voided,
        journal_approved=journal_approved,
        escalation_count=escalations,
        last_escalation_target=last_target,
    )


def blocking_lines(
    state: JournalApprovalState, actor_tier: ApprovalTier | None
) -> tuple[LineApprovalState, ...]:
    """Lines the actor cannot cover and nobody has validly approved."""
    return tuple(
        line
        for line in state.lines
        if not line.approved and not has_authority(actor_tier, line.required_tier)
    )


def escalation_target(
    actor_tier: ApprovalTier | None, outstanding: ApprovalTier | None
) -> ApprovalTier:
    above = actor_tier.next_above() if actor_tier is not None else ApprovalTier.LEAD
    if outstanding is not None and outstanding > above:
        return outstanding
    return above
