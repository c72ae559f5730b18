"""
Typed Exception Hierarchy for the Cycle Count Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure the engine reports maps to a specific caller action: re-fetch
the eligible list, request an escalation, finish the remaining lines.
Callers must be able to branch on the failure without parsing messages:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way:
    try:
        pool.claim(journal_id, operator)
    except AlreadyClaimedError as e:
        refresh_eligible_list(exclude=e.journal_id)
        api_response(code=e.code, journal=e.journal_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from CycleCountError:

    CycleCountError (base)
    |
    +-- PlanError
    |   +-- PlanNotFoundError
    |   +-- InvalidPlanError
    |   +-- InvalidPlanTransitionError
    |   +-- PlanImmutableError
    |   +-- JournalsAlreadyGeneratedError
    |
    +-- DispatchError
    |   +-- JournalNotFoundError
    |   +-- AlreadyClaimedError
    |   +-- NotEligibleError
    |   +-- NotOwnerError
    |
    +-- CountingError
    |   +-- LineNotFoundError
    |   +-- LineNotOwnedByClaimantError
    |   +-- InvalidQuantityError
    |   +-- InvalidEvidenceError
    |   +-- InvalidSkipReasonError
    |   +-- IncompleteLinesError
    |
    +-- ApprovalError
    |   +-- InvalidTransitionError
    |   +-- InsufficientAuthorityError
    |   +-- RecountLimitExceededError
    |
    +-- ReconciliationError
    |   +-- NotApprovedError
    |   +-- AlreadyReconciledError
    |   +-- ReconciliationIntegrityError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigError
        +-- InvalidConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | Caller action
----------------|-------------------------------|-------------------------------
Plan            | PLAN_NOT_FOUND                | Re-fetch plan list
                | INVALID_PLAN                  | Fix plan definition
                | INVALID_PLAN_TRANSITION       | Re-read plan status
                | PLAN_IMMUTABLE                | Create a new plan
                | JOURNALS_ALREADY_GENERATED    | Use the existing journals
----------------|-------------------------------|-------------------------------
Dispatch        | JOURNAL_NOT_FOUND             | Re-fetch eligible list
                | ALREADY_CLAIMED               | Re-fetch eligible list
                | NOT_ELIGIBLE                  | Pick another journal
                | NOT_OWNER                     | Re-claim or drop the journal
----------------|-------------------------------|-------------------------------
Counting        | LINE_NOT_FOUND                | Re-fetch journal
                | LINE_NOT_OWNED_BY_CLAIMANT    | Re-claim the journal
                | INVALID_QUANTITY              | Re-enter quantity
                | INVALID_EVIDENCE              | Fix serials/photos
                | INVALID_SKIP_REASON           | Provide a reason
                | INCOMPLETE_LINES              | Complete remaining lines
----------------|-------------------------------|-------------------------------
Approval        | INVALID_TRANSITION            | Re-read journal status
                | INSUFFICIENT_AUTHORITY        | Escalate
                | RECOUNT_LIMIT_EXCEEDED        | Approve or void instead
----------------|-------------------------------|-------------------------------
Reconciliation  | NOT_APPROVED                  | Wait for approval
                | ALREADY_RECONCILED            | Use the existing batch (OK)
                | RECONCILIATION_INTEGRITY_FAULT| HARD ALERT - operator action
----------------|-------------------------------|-------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT      | Retry
Immutability    | IMMUTABILITY_VIOLATION        | Programming error
Config          | INVALID_CONFIG                | Fix configuration file

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Inherit from Exception, not ValueError: domain errors are catchable as a
   group and never confused with programming errors.
2. ``code`` is a class attribute so it can be read without instantiation.
3. Every piece of context is an attribute, so it survives structured
   logging (see logging_config.StructuredFormatter).

===============================================================================
"""


class CycleCountError(Exception):
    """
    Base exception for all cycle count kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "CYCLE_COUNT_ERROR"


# Plan-related exceptions


class PlanError(CycleCountError):
    """Base exception for count plan errors."""

    code: str = "PLAN_ERROR"


class PlanNotFoundError(PlanError):
    """Count plan with given ID was not found."""

    code: str = "PLAN_NOT_FOUND"

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Count plan not found: {plan_id}")


class InvalidPlanError(PlanError):
    """Count plan definition is invalid."""

    code: str = "INVALID_PLAN"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid count plan: {reason}")


class InvalidPlanTransitionError(PlanError):
    """Count plan status does not allow the requested operation."""

    code: str = "INVALID_PLAN_TRANSITION"

    def __init__(self, plan_id: str, from_status: str, to_status: str):
        self.plan_id = plan_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Count plan {plan_id} cannot move from {from_status} to {to_status}"
        )


class PlanImmutableError(PlanError):
    """Count plan is no longer a draft and cannot be edited."""

    code: str = "PLAN_IMMUTABLE"

    def __init__(self, plan_id: str, status: str):
        self.plan_id = plan_id
        self.status = status
        super().__init__(
            f"Count plan {plan_id} is {status}; only draft plans can be edited"
        )


class JournalsAlreadyGeneratedError(PlanError):
    """Journals have already been generated for this plan."""

    code: str = "JOURNALS_ALREADY_GENERATED"

    def __init__(self, plan_id: str, journal_count: int):
        self.plan_id = plan_id
        self.journal_count = journal_count
        super().__init__(
            f"Count plan {plan_id} already has {journal_count} journal(s)"
        )


# Dispatch-related exceptions


class DispatchError(CycleCountError):
    """Base exception for dispatch pool errors."""

    code: str = "DISPATCH_ERROR"


class JournalNotFoundError(DispatchError):
    """Journal with given ID was not found."""

    code: str = "JOURNAL_NOT_FOUND"

    def __init__(self, journal_id: str):
        self.journal_id = journal_id
        super().__init__(f"Journal not found: {journal_id}")


class AlreadyClaimedError(DispatchError):
    """Journal is held by another operator (or the claim race was lost)."""

    code: str = "ALREADY_CLAIMED"

    def __init__(self, journal_id: str, holder_id: str | None = None):
        self.journal_id = journal_id
        self.holder_id = holder_id
        super().__init__(f"Journal {journal_id} is already claimed")


class NotEligibleError(DispatchError):
    """Operator may not claim this journal."""

    code: str = "NOT_ELIGIBLE"

    def __init__(self, journal_id: str, operator_id: str, reasons: tuple[str, ...]):
        self.journal_id = journal_id
        self.operator_id = operator_id
        self.reasons = reasons
        super().__init__(
            f"Operator {operator_id} is not eligible for journal {journal_id}: "
            f"{', '.join(reasons)}"
        )


class NotOwnerError(DispatchError):
    """Caller does not hold a live claim on the journal."""

    code: str = "NOT_OWNER"

    def __init__(self, journal_id: str, operator_id: str, holder_id: str | None):
        self.journal_id = journal_id
        self.operator_id = operator_id
        self.holder_id = holder_id
        super().__init__(
            f"Operator {operator_id} does not hold journal {journal_id}"
        )


# Counting-related exceptions


class CountingError(CycleCountError):
    """Base exception for count session errors."""

    code: str = "COUNTING_ERROR"


class LineNotFoundError(CountingError):
    """Journal line with given ID was not found."""

    code: str = "LINE_NOT_FOUND"

    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__(f"Journal line not found: {line_id}")


class LineNotOwnedByClaimantError(CountingError):
    """Line belongs to a journal the caller does not hold, or is out of scope."""

    code: str = "LINE_NOT_OWNED_BY_CLAIMANT"

    def __init__(self, line_id: str, operator_id: str, reason: str):
        self.line_id = line_id
        self.operator_id = operator_id
        self.reason = reason
        super().__init__(
            f"Operator {operator_id} cannot count line {line_id}: {reason}"
        )


class InvalidQuantityError(CountingError):
    """Counted quantity is negative or not a finite number."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid quantity {value!r}: {reason}")


class InvalidEvidenceError(CountingError):
    """Evidence references attached to a count are invalid."""

    code: str = "INVALID_EVIDENCE"

    def __init__(self, line_id: str, reason: str):
        self.line_id = line_id
        self.reason = reason
        super().__init__(f"Invalid evidence for line {line_id}: {reason}")


class InvalidSkipReasonError(CountingError):
    """A line can only be skipped with a non-empty reason."""

    code: str = "INVALID_SKIP_REASON"

    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__(f"Skipping line {line_id} requires a reason")


class IncompleteLinesError(CountingError):
    """Journal cannot be submitted while lines remain uncounted."""

    code: str = "INCOMPLETE_LINES"

    def __init__(self, journal_id: str, line_ids: tuple[str, ...]):
        self.journal_id = journal_id
        self.line_ids = line_ids
        super().__init__(
            f"Journal {journal_id} has {len(line_ids)} uncounted line(s)"
        )


# Approval-related exceptions


class ApprovalError(CycleCountError):
    """Base exception for approval workflow errors."""

    code: str = "APPROVAL_ERROR"


class InvalidTransitionError(ApprovalError):
    """Operation attempted from a non-matching journal state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, journal_id: str, current_status: str, action: str):
        self.journal_id = journal_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} journal {journal_id} in status {current_status}"
        )


class InsufficientAuthorityError(ApprovalError):
    """Actor's role is below the tier the operation requires."""

    code: str = "INSUFFICIENT_AUTHORITY"

    def __init__(self, actor_role: str, required_tier: str, target: str):
        self.actor_role = actor_role
        self.required_tier = required_tier
        self.target = target
        super().__init__(
            f"Role {actor_role!r} lacks {required_tier} authority for {target}"
        )


class RecountLimitExceededError(ApprovalError):
    """Line has already been counted the maximum number of passes."""

    code: str = "RECOUNT_LIMIT_EXCEEDED"

    def __init__(self, line_id: str, max_passes: int):
        self.line_id = line_id
        self.max_passes = max_passes
        super().__init__(
            f"Line {line_id} has reached the limit of {max_passes} counting passes"
        )


# Reconciliation-related exceptions


class ReconciliationError(CycleCountError):
    """Base exception for reconciliation errors."""

    code: str = "RECONCILIATION_ERROR"


class NotApprovedError(ReconciliationError):
    """Only approved journals can be reconciled."""

    code: str = "NOT_APPROVED"

    def __init__(self, journal_id: str, current_status: str):
        self.journal_id = journal_id
        self.current_status = current_status
        super().__init__(
            f"Journal {journal_id} is {current_status}, not approved"
        )


class AlreadyReconciledError(ReconciliationError):
    """Journal has already been reconciled (idempotent success)."""

    code: str = "ALREADY_RECONCILED"

    def __init__(self, journal_id: str, batch_id: str):
        self.journal_id = journal_id
        self.batch_id = batch_id
        super().__init__(
            f"Journal {journal_id} already reconciled as batch {batch_id}"
        )


class ReconciliationIntegrityError(ReconciliationError):
    """
    A reconciliation batch exists without a matching journal status flip,
    or is missing entries.

    This indicates a prior non-atomic write. It is never auto-healed and
    must be investigated by an operator.
    """

    code: str = "RECONCILIATION_INTEGRITY_FAULT"

    def __init__(self, journal_id: str, batch_id: str, reason: str):
        self.journal_id = journal_id
        self.batch_id = batch_id
        self.reason = reason
        super().__init__(
            f"Reconciliation integrity fault on journal {journal_id} "
            f"(batch {batch_id}): {reason}"
        )


# Concurrency-related exceptions


class ConcurrencyError(CycleCountError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability-related exceptions


class ImmutabilityError(CycleCountError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Count passes, approval decisions, reconciliation rows, events and
    active plans are immutable after creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigError(CycleCountError):
    """Base exception for configuration errors."""

    code: str = "CONFIG_ERROR"


class InvalidConfigError(ConfigError):
    """Configuration failed validation."""

    code: str = "INVALID_CONFIG"

    def __init__(self, errors: tuple[str, ...]):
        self.errors = errors
        super().__init__(
            f"Invalid cycle count configuration: {'; '.join(errors)}"
        )
