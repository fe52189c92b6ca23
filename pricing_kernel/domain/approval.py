"""
Approval domain types (``pricing_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the decision-package workflow: package and task
lifecycles, the task assignment union, and the per-track status rollup
used to decide when the OVERALL task may be opened.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``PACKAGE_TRANSITIONS`` and ``TASK_TRANSITIONS`` are the only valid
  status transitions.  Terminal states have no outgoing edges.
* A task is assigned to exactly one of a specific user or a role pool.
  ``Assignment`` is a closed union; every consumer matches exhaustively.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pricing_kernel.domain.actor import Actor, Role


class RfqStatus(str, Enum):
    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    WON = "WON"
    LOST = "LOST"
    CANCELLED = "CANCELLED"


class ApprovalPolicy(str, Enum):
    """Routing policy applied when a package is submitted."""

    PARALLEL_TECH_BUDGET_OVERALL = "PARALLEL_TECH_BUDGET_OVERALL"


class PackageStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    REJECTED = "REJECTED"


class TaskType(str, Enum):
    TECH = "TECH"
    BUDGET = "BUDGET"
    OVERALL = "OVERALL"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


PACKAGE_TRANSITIONS: dict[PackageStatus, frozenset[PackageStatus]] = {
    PackageStatus.DRAFT: frozenset({PackageStatus.SUBMITTED}),
    PackageStatus.SUBMITTED: frozenset({PackageStatus.DRAFT, PackageStatus.REJECTED}),
    PackageStatus.REJECTED: frozenset(),
}

TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.APPROVED, TaskStatus.REJECTED}),
    TaskStatus.APPROVED: frozenset(),
    TaskStatus.REJECTED: frozenset(),
}

# Task types a pooled management role may pick up without being asked.
MANAGEMENT_CLAIMABLE: frozenset[TaskType] = frozenset({TaskType.BUDGET, TaskType.OVERALL})


def can_transition_package(current: PackageStatus, target: PackageStatus) -> bool:
    return target in PACKAGE_TRANSITIONS.get(current, frozenset())


# =========================================================================
# Assignment union
# =========================================================================


@dataclass(frozen=True)
class AssignedToUser:
    user_id: UUID


@dataclass(frozen=True)
class AssignedToRolePool:
    role: Role


Assignment = AssignedToUser | AssignedToRolePool


def assignment_from_columns(
    assigned_to_id: UUID | None, assigned_to_role: str | None
) -> Assignment:
    """Rebuild the union from the two nullable persistence columns."""
    if assigned_to_id is not None and assigned_to_role is None:
        return AssignedToUser(assigned_to_id)
    if assigned_to_id is None and assigned_to_role is not None:
        return AssignedToRolePool(Role(assigned_to_role))
    raise ValueError(
        "Approval task must be assigned to exactly one of a user or a role pool"
    )


def assignment_to_columns(assignment: Assignment) -> tuple[UUID | None, str | None]:
    match assignment:
        case AssignedToUser(user_id=user_id):
            return user_id, None
        case AssignedToRolePool(role=role):
            return None, role.value


def can_claim(
    task_type: TaskType,
    assignment: Assignment,
    actor: Actor,
    management_roles: frozenset[Role],
) -> bool:
    """Whether ``actor`` may take a pooled task for themselves.

    Claiming is only meaningful for pooled tasks.  BUDGET and OVERALL
    tasks may be claimed by any management role; TECH tasks only by the
    pooled role itself.
    """
    match assignment:
        case AssignedToUser():
            return False
        case AssignedToRolePool(role=role):
            if task_type in MANAGEMENT_CLAIMABLE:
                return actor.role in management_roles
            return actor.role == role


def is_assigned_to(assignment: Assignment, actor: Actor) -> bool:
    match assignment:
        case AssignedToUser(user_id=user_id):
            return user_id == actor.id
        case AssignedToRolePool():
            return False


# =========================================================================
# Read-side value objects
# =========================================================================


@dataclass(frozen=True)
class ApprovalTaskInfo:
    """Immutable view of one approval task."""

    id: UUID
    package_id: UUID
    task_type: TaskType
    status: TaskStatus
    assignment: Assignment
    decided_by_id: UUID | None = None
    decided_at: datetime | None = None
    comment: str | None = None
    due_date: date | None = None
    created_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING


@dataclass(frozen=True)
class PackageApprovalStatus:
    """Rollup of every approval track of one package."""

    package_id: UUID
    package_status: PackageStatus
    tech_status: TaskStatus
    budget_status: TaskStatus
    overall_status: TaskStatus
    can_proceed_to_overall: bool
    is_fully_approved: bool
    is_rejected: bool
    tasks: tuple[ApprovalTaskInfo, ...] = ()


def _track_status(statuses: list[TaskStatus]) -> TaskStatus:
    if statuses and all(s == TaskStatus.APPROVED for s in statuses):
        return TaskStatus.APPROVED
    if any(s == TaskStatus.REJECTED for s in statuses):
        return TaskStatus.REJECTED
    return TaskStatus.PENDING


def should_open_overall(tasks: Iterable[tuple[TaskType, TaskStatus]]) -> bool:
    """True when every TECH and BUDGET task is approved and no OVERALL exists.

    An empty TECH track (no registered reviewers) counts as approved so
    the package is not stranded.
    """
    pairs = list(tasks)
    if any(task_type == TaskType.OVERALL for task_type, _ in pairs):
        return False
    gating = [status for task_type, status in pairs if task_type != TaskType.OVERALL]
    return bool(gating) and all(s == TaskStatus.APPROVED for s in gating)


def summarize_approval(
    package_id: UUID,
    package_status: PackageStatus,
    tasks: list[ApprovalTaskInfo],
) -> PackageApprovalStatus:
    by_type: dict[TaskType, list[TaskStatus]] = {t: [] for t in TaskType}
    for task in tasks:
        by_type[task.task_type].append(task.status)

    tech = _track_status(by_type[TaskType.TECH])
    if tasks and not by_type[TaskType.TECH]:
        # No registered reviewers.
        tech = TaskStatus.APPROVED
    budget = _track_status(by_type[TaskType.BUDGET])
    overall = _track_status(by_type[TaskType.OVERALL])

    return PackageApprovalStatus(
        package_id=package_id,
        package_status=package_status,
        tech_status=tech,
        budget_status=budget,
        overall_status=overall,
        can_proceed_to_overall=should_open_overall(
            (t.task_type, t.status) for t in tasks
        ),
        is_fully_approved=overall == TaskStatus.APPROVED,
        is_rejected=any(t.status == TaskStatus.REJECTED for t in tasks),
        tasks=tuple(tasks),
    )
