"""
Typed Exception Hierarchy for the Pricing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (an HTTP layer, a CLI, a batch job) must map errors to responses
without parsing message strings. Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

Example:
    try:
        approvals.claim(task_id, actor)
    except TaskAlreadyClaimedError as e:
        api_response(409, code=e.code, task=e.task_id, holder=e.assigned_to_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PricingKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidAllocationError
    |   +-- InvalidScenarioError
    |   +-- InvalidRateError
    |   +-- InvalidPackageError
    |
    +-- NotFoundError
    |   +-- EntityNotFoundError
    |
    +-- StateConflictError
    |   +-- RateOverlapError
    |   +-- InvalidPackageTransitionError
    |   +-- RecallNotAllowedError
    |   +-- TaskAlreadyDecidedError
    |   +-- TaskNotAssignedError
    |   +-- TaskAlreadyClaimedError
    |   +-- ClaimNotPermittedError
    |   +-- AssignmentNotPermittedError
    |   +-- TaskAccessDeniedError
    |
    +-- ImmutabilityError
        +-- SnapshotImmutableError
        +-- SnapshotTamperedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|---------------------------------------
Validation   | INVALID_ALLOCATION            | FTE out of range / off-step, bad month
             | INVALID_SCENARIO              | Quota, story points, multiplier, risk
             | INVALID_RATE                  | Non-positive rate, inverted interval
             | INVALID_PACKAGE               | No scenarios, foreign scenario
-------------|-------------------------------|---------------------------------------
Not found    | ENTITY_NOT_FOUND              | Id does not resolve to a row
-------------|-------------------------------|---------------------------------------
Conflict     | RATE_OVERLAP                  | Effective interval intersects another
             | INVALID_PACKAGE_TRANSITION    | Package not in the required status
             | RECALL_NOT_ALLOWED            | A task already left PENDING
             | TASK_ALREADY_DECIDED          | Decision on a non-PENDING task
             | TASK_NOT_ASSIGNED             | Decider is not the assignee
             | TASK_ALREADY_CLAIMED          | Claim on a task with an assignee
             | CLAIM_NOT_PERMITTED           | Role not eligible for the task type
             | ASSIGNMENT_NOT_PERMITTED      | Assigner lacks a management role
             | TASK_ACCESS_DENIED            | Reader is unrelated to the task
-------------|-------------------------------|---------------------------------------
Immutability | SNAPSHOT_IMMUTABLE            | Locked snapshot rewritten in place
             | SNAPSHOT_TAMPERED             | Stored hash differs from recomputed

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Conflicts are never retried automatically. A claim that lost a race is
   a user-visible outcome, not a transient fault.
2. Missing rates are NOT exceptions. They are data-completeness warnings
   reported in the calculation result.
"""


class PricingKernelError(Exception):
    """
    Base exception for all pricing kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PRICING_KERNEL_ERROR"


# Validation errors


class ValidationError(PricingKernelError):
    """Input rejected before any persistence."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidAllocationError(ValidationError):
    code: str = "INVALID_ALLOCATION"


class InvalidScenarioError(ValidationError):
    code: str = "INVALID_SCENARIO"


class InvalidRateError(ValidationError):
    code: str = "INVALID_RATE"


class InvalidPackageError(ValidationError):
    code: str = "INVALID_PACKAGE"


# Lookup errors


class NotFoundError(PricingKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class EntityNotFoundError(NotFoundError):
    """Entity with given id was not found."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# State conflicts


class StateConflictError(PricingKernelError):
    """Operation is not allowed in the entity's current state."""

    code: str = "STATE_CONFLICT"


class RateOverlapError(StateConflictError):
    """New or updated rate interval intersects an existing one."""

    code: str = "RATE_OVERLAP"

    def __init__(
        self,
        dimension: str,
        existing_rate_id: str,
        existing_from: str,
        existing_to: str | None,
    ):
        self.dimension = dimension
        self.existing_rate_id = existing_rate_id
        self.existing_from = existing_from
        self.existing_to = existing_to
        super().__init__(
            f"Rate for {dimension} overlaps with {existing_rate_id} "
            f"({existing_from} to {existing_to or 'open'})"
        )


class ScenarioInUseError(StateConflictError):
    """Scenario is linked to a decision package and cannot be deleted."""

    code: str = "SCENARIO_IN_USE"

    def __init__(self, scenario_id: str, package_count: int):
        self.scenario_id = scenario_id
        self.package_count = package_count
        super().__init__(
            f"Scenario {scenario_id} is linked to {package_count} decision package(s)"
        )


class InvalidPackageTransitionError(StateConflictError):
    """Decision package is not in the status the operation requires."""

    code: str = "INVALID_PACKAGE_TRANSITION"

    def __init__(self, package_id: str, current_status: str, required_status: str):
        self.package_id = package_id
        self.current_status = current_status
        self.required_status = required_status
        super().__init__(
            f"Decision package {package_id} is {current_status}, "
            f"must be {required_status}"
        )


class RecallNotAllowedError(StateConflictError):
    """A submitted package cannot be recalled once any task is decided."""

    code: str = "RECALL_NOT_ALLOWED"

    def __init__(self, package_id: str, decided_task_ids: list[str]):
        self.package_id = package_id
        self.decided_task_ids = decided_task_ids
        super().__init__(
            f"Decision package {package_id} has decided tasks: "
            f"{', '.join(decided_task_ids)}"
        )


class TaskAlreadyDecidedError(StateConflictError):
    code: str = "TASK_ALREADY_DECIDED"

    def __init__(self, task_id: str, status: str):
        self.task_id = task_id
        self.status = status
        super().__init__(f"Approval task {task_id} is already {status}")


class TaskNotAssignedError(StateConflictError):
    code: str = "TASK_NOT_ASSIGNED"

    def __init__(self, task_id: str, actor_id: str):
        self.task_id = task_id
        self.actor_id = actor_id
        super().__init__(f"Approval task {task_id} is not assigned to {actor_id}")


class TaskAlreadyClaimedError(StateConflictError):
    code: str = "TASK_ALREADY_CLAIMED"

    def __init__(self, task_id: str, assigned_to_id: str | None = None):
        self.task_id = task_id
        self.assigned_to_id = assigned_to_id
        super().__init__(f"Approval task {task_id} is already claimed")


class ClaimNotPermittedError(StateConflictError):
    code: str = "CLAIM_NOT_PERMITTED"

    def __init__(self, task_id: str, task_type: str, role: str):
        self.task_id = task_id
        self.task_type = task_type
        self.role = role
        super().__init__(f"Role {role} may not claim {task_type} task {task_id}")


class AssignmentNotPermittedError(StateConflictError):
    code: str = "ASSIGNMENT_NOT_PERMITTED"

    def __init__(self, task_id: str, role: str):
        self.task_id = task_id
        self.role = role
        super().__init__(f"Role {role} may not assign approval task {task_id}")


# Immutability


class ImmutabilityError(PricingKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class SnapshotImmutableError(ImmutabilityError):
    """A locked snapshot may only be cleared, never rewritten."""

    code: str = "SNAPSHOT_IMMUTABLE"

    def __init__(self, link_id: str):
        self.link_id = link_id
        super().__init__(f"Snapshot {link_id} is locked and cannot be modified")


class SnapshotTamperedError(ImmutabilityError):
    """Stored snapshot hash does not match its content."""

    code: str = "SNAPSHOT_TAMPERED"

    def __init__(self, link_id: str, stored_hash: str, computed_hash: str):
        self.link_id = link_id
        self.stored_hash = stored_hash
        self.computed_hash = computed_hash
        super().__init__(
            f"Snapshot {link_id} hash mismatch: "
            f"stored {stored_hash[:12]}, computed {computed_hash[:12]}"
        )


class TaskAccessDeniedError(StateConflictError):
    """Actor is neither the assignee, in the pooled role, nor management."""

    code: str = "TASK_ACCESS_DENIED"

    def __init__(self, task_id: str, actor_id: str):
        self.task_id = task_id
        self.actor_id = actor_id
        super().__init__(f"Actor {actor_id} has no access to approval task {task_id}")
