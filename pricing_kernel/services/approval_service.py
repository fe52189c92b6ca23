"""
pricing_kernel.services.approval_service -- Approval task state machine.

Responsibility:
    Opens the approval tasks of a submitted decision package, lets users
    claim, get assigned and decide them, and applies the package-level
    consequences of each decision: opening the OVERALL task, marking the
    proposal SUBMITTED, or rejecting the package.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.
    Called by the decision package workflow for task creation and
    removal, and directly by callers for claim/assign/decide.

Invariants enforced:
    - A task leaves PENDING exactly once.  The decision is written by a
      conditional UPDATE (status PENDING and assignee = actor); the ORM
      listeners on ApprovalTask back this up.
    - Claim is a conditional UPDATE on an unassigned PENDING row, so of
      two concurrent claimants exactly one wins.
    - At most one OVERALL task per package: ``decide`` locks the package
      row before recomputing track state, and a partial unique index
      rejects a second OVERALL row.
    - A rejection moves the package to REJECTED and clears every
      scenario snapshot in the same transaction.

Failure modes:
    - TaskAlreadyDecidedError, TaskNotAssignedError,
      TaskAlreadyClaimedError, ClaimNotPermittedError,
      AssignmentNotPermittedError, TaskAccessDeniedError.
    - InvalidPackageTransitionError when deciding on a package that is
      no longer SUBMITTED.
    - EntityNotFoundError for unknown tasks or packages.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from pricing_kernel.domain.actor import Actor, Role
from pricing_kernel.domain.approval import (
    ApprovalPolicy,
    ApprovalTaskInfo,
    AssignedToRolePool,
    AssignedToUser,
    Assignment,
    PackageStatus,
    RfqStatus,
    TaskStatus,
    TaskType,
    can_claim,
    can_transition_package,
    is_assigned_to,
    should_open_overall,
)
from pricing_kernel.domain.clock import Clock
from pricing_kernel.domain.policy import ApprovalRules
from pricing_kernel.exceptions import (
    AssignmentNotPermittedError,
    ClaimNotPermittedError,
    InvalidPackageTransitionError,
    TaskAccessDeniedError,
    TaskAlreadyClaimedError,
    TaskAlreadyDecidedError,
    TaskNotAssignedError,
    ValidationError,
)
from pricing_kernel.logging_config import LogContext, get_logger
from pricing_kernel.models.approval import ApprovalTask
from pricing_kernel.models.decision_package import DecisionPackage
from pricing_kernel.models.rfq import Rfq
from pricing_kernel.selectors.approval_selector import ApprovalSelector
from pricing_kernel.services.base import BaseService
from pricing_kernel.services.notification import (
    Notification,
    NotificationDispatcher,
    NotificationKind,
)

logger = get_logger("services.approval")

_DECISIONS = frozenset({TaskStatus.APPROVED, TaskStatus.REJECTED})


class ApprovalService(BaseService):
    """Claim, assign and decide approval tasks."""

    def __init__(
        self,
        session: Session,
        rules: ApprovalRules | None = None,
        clock: Clock | None = None,
        notifications: NotificationDispatcher | None = None,
    ):
        super().__init__(session, clock)
        self.rules = rules or ApprovalRules()
        self.notifications = notifications or NotificationDispatcher()
        self._selector = ApprovalSelector(session)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_tasks_for(self, actor: Actor) -> list[ApprovalTaskInfo]:
        return self._selector.tasks_for_actor(actor)

    def list_available(self, actor: Actor) -> list[ApprovalTaskInfo]:
        return self._selector.available_tasks(actor, self.rules.management_roles)

    def get_task(self, task_id: UUID, actor: Actor) -> ApprovalTaskInfo:
        """One task, if the actor may see it.

        Visible to the assignee, to holders of the pooled role, to
        management and to admins.
        """
        task = self._get(ApprovalTask, task_id)
        assignment = task.assignment
        visible = (
            is_assigned_to(assignment, actor)
            or assignment == AssignedToRolePool(actor.role)
            or actor.role in self.rules.management_roles
            or actor.role == Role.ADMIN
        )
        if not visible:
            raise TaskAccessDeniedError(task_id=str(task_id), actor_id=str(actor.id))
        return task.to_dto()

    # ------------------------------------------------------------------
    # Task creation and removal (package workflow)
    # ------------------------------------------------------------------

    def open_submission_tasks(
        self,
        package: DecisionPackage,
        reviewer_ids: Sequence[UUID],
        actor: Actor,
        due_date: date | None = None,
    ) -> list[ApprovalTask]:
        """Create the tasks the package's routing policy requires.

        Every task, and the OVERALL task opened later, is due on ``due_date``.
        """
        if due_date is not None and due_date < self.clock.now().date():
            raise ValidationError("due_date", f"{due_date} is in the past")
        rfq = self._get(Rfq, package.rfq_id)
        match ApprovalPolicy(rfq.policy):
            case ApprovalPolicy.PARALLEL_TECH_BUDGET_OVERALL:
                assignments: list[tuple[TaskType, Assignment]] = [
                    (TaskType.TECH, AssignedToUser(user_id)) for user_id in reviewer_ids
                ]
                assignments.append(
                    (TaskType.BUDGET, AssignedToRolePool(self.rules.budget_pool_role))
                )

        tasks = [
            self._new_task(package, task_type, assignment, actor, due_date)
            for task_type, assignment in assignments
        ]
        self.session.flush()

        for task in tasks:
            self._notify_assignment(task, rfq, package)
        logger.info(
            "approval_tasks_opened",
            extra={
                "package_id": str(package.id),
                "tech_tasks": len(reviewer_ids),
                "policy": rfq.policy,
                "due_date": due_date,
            },
        )
        return tasks

    def discard_pending_tasks(self, package_id: UUID) -> int:
        result = self.session.execute(
            delete(ApprovalTask)
            .where(
                ApprovalTask.package_id == package_id,
                ApprovalTask.status == TaskStatus.PENDING.value,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign(self, task_id: UUID, user_id: UUID, actor: Actor) -> ApprovalTaskInfo:
        """Hand a pending task to a named user."""
        if actor.role not in self.rules.assigner_roles:
            raise AssignmentNotPermittedError(task_id=str(task_id), role=actor.role.value)

        task = self._get(ApprovalTask, task_id)
        if task.status_enum != TaskStatus.PENDING:
            raise TaskAlreadyDecidedError(task_id=str(task_id), status=task.status)

        task.assignment = AssignedToUser(user_id)
        task.touch(actor.id)
        self.session.flush()

        package = self._get(DecisionPackage, task.package_id)
        self._notify_assignment(task, self._get(Rfq, package.rfq_id), package)
        logger.info(
            "task_assigned",
            extra={
                "task_id": str(task_id),
                "user_id": str(user_id),
                "actor_id": str(actor.id),
            },
        )
        return task.to_dto()

    def claim(self, task_id: UUID, actor: Actor) -> ApprovalTaskInfo:
        """Take a pooled task for oneself.

        The pre-checks give a precise error; the conditional UPDATE is
        what actually arbitrates between concurrent claimants.
        """
        task = self._get(ApprovalTask, task_id)
        if task.status_enum != TaskStatus.PENDING:
            raise TaskAlreadyDecidedError(task_id=str(task_id), status=task.status)
        if task.assigned_to_id is not None:
            raise TaskAlreadyClaimedError(
                task_id=str(task_id), assigned_to_id=str(task.assigned_to_id),
            )
        if not can_claim(task.type_enum, task.assignment, actor, self.rules.management_roles):
            raise ClaimNotPermittedError(
                task_id=str(task_id), task_type=task.task_type, role=actor.role.value,
            )

        result = self.session.execute(
            update(ApprovalTask)
            .where(
                ApprovalTask.id == task_id,
                ApprovalTask.assigned_to_id.is_(None),
                ApprovalTask.status == TaskStatus.PENDING.value,
            )
            .values(
                assigned_to_id=actor.id,
                assigned_to_role=None,
                updated_by_id=actor.id,
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            logger.warning(
                "task_claim_lost",
                extra={"task_id": str(task_id), "actor_id": str(actor.id)},
            )
            raise TaskAlreadyClaimedError(task_id=str(task_id))

        self.session.refresh(task)
        logger.info(
            "task_claimed",
            extra={"task_id": str(task_id), "actor_id": str(actor.id)},
        )
        return task.to_dto()

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def decide(
        self,
        task_id: UUID,
        decision: TaskStatus,
        actor: Actor,
        comment: str | None = None,
    ) -> ApprovalTaskInfo:
        """Approve or reject a task assigned to ``actor``.

        All consequences are applied in the caller's transaction:
            - approving the last TECH/BUDGET task opens OVERALL,
            - approving OVERALL marks the proposal SUBMITTED,
            - any rejection rejects the package and clears its snapshots.
        """
        if decision not in _DECISIONS:
            raise ValidationError("decision", f"must be APPROVED or REJECTED, got {decision}")

        task = self._get(ApprovalTask, task_id)
        with LogContext.bind(task_id=str(task_id), package_id=str(task.package_id)):
            if task.status_enum != TaskStatus.PENDING:
                raise TaskAlreadyDecidedError(task_id=str(task_id), status=task.status)
            if not is_assigned_to(task.assignment, actor):
                raise TaskNotAssignedError(task_id=str(task_id), actor_id=str(actor.id))

            package = self._get_for_update(DecisionPackage, task.package_id)
            if package.status_enum != PackageStatus.SUBMITTED:
                raise InvalidPackageTransitionError(
                    package_id=str(package.id),
                    current_status=package.status,
                    required_status=PackageStatus.SUBMITTED.value,
                )

            self._write_decision(task, decision, actor, comment)
            rfq = self._get(Rfq, package.rfq_id)

            match decision:
                case TaskStatus.APPROVED:
                    if task.type_enum == TaskType.OVERALL:
                        self._mark_rfq_submitted(rfq, actor)
                    else:
                        self._maybe_open_overall(package, rfq, actor)
                case TaskStatus.REJECTED:
                    self._reject_package(package, actor)

            self.notifications.enqueue(
                self.session,
                Notification(
                    kind=NotificationKind.DECISION_RECORDED,
                    task_id=task.id,
                    task_type=task.type_enum,
                    rfq_name=rfq.name,
                    package_name=package.name,
                    recipient_id=rfq.created_by_id,
                    decision=decision,
                    comment=comment,
                ),
            )
            logger.info(
                "task_decided",
                extra={
                    "task_type": task.task_type,
                    "decision": decision.value,
                    "actor_id": str(actor.id),
                },
            )
            return task.to_dto()

    def _write_decision(
        self,
        task: ApprovalTask,
        decision: TaskStatus,
        actor: Actor,
        comment: str | None,
    ) -> None:
        result = self.session.execute(
            update(ApprovalTask)
            .where(
                ApprovalTask.id == task.id,
                ApprovalTask.status == TaskStatus.PENDING.value,
                ApprovalTask.assigned_to_id == actor.id,
            )
            .values(
                status=decision.value,
                decided_by_id=actor.id,
                decided_at=self.clock.now(),
                comment=comment,
                updated_by_id=actor.id,
            )
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 1:
            self.session.refresh(task)
            return

        # Lost a race; report what the winner left behind.
        self.session.refresh(task)
        if task.status_enum != TaskStatus.PENDING:
            raise TaskAlreadyDecidedError(task_id=str(task.id), status=task.status)
        raise TaskNotAssignedError(task_id=str(task.id), actor_id=str(actor.id))

    def _maybe_open_overall(
        self, package: DecisionPackage, rfq: Rfq, actor: Actor
    ) -> ApprovalTask | None:
        tracks = self.session.execute(
            select(ApprovalTask.task_type, ApprovalTask.status).where(
                ApprovalTask.package_id == package.id
            )
        ).all()
        if not should_open_overall(
            (TaskType(task_type), TaskStatus(status)) for task_type, status in tracks
        ):
            return None

        due_date = self.session.execute(
            select(func.min(ApprovalTask.due_date)).where(ApprovalTask.package_id == package.id)
        ).scalar_one()
        overall = self._new_task(
            package,
            TaskType.OVERALL,
            AssignedToRolePool(self.rules.overall_pool_role),
            actor,
            due_date,
        )
        self.session.flush()
        self._notify_assignment(overall, rfq, package)
        logger.info("overall_task_opened", extra={"overall_task_id": str(overall.id)})
        return overall

    def _mark_rfq_submitted(self, rfq: Rfq, actor: Actor) -> None:
        previous = rfq.status
        rfq.status = RfqStatus.SUBMITTED.value
        rfq.touch(actor.id)
        self.session.flush()
        logger.info(
            "rfq_submitted",
            extra={"rfq_id": str(rfq.id), "from_status": previous},
        )

    def _reject_package(self, package: DecisionPackage, actor: Actor) -> None:
        if not can_transition_package(package.status_enum, PackageStatus.REJECTED):
            raise InvalidPackageTransitionError(
                package_id=str(package.id),
                current_status=package.status,
                required_status=PackageStatus.SUBMITTED.value,
            )
        package.status = PackageStatus.REJECTED.value
        package.touch(actor.id)
        for link in package.scenario_links:
            link.unlock()
        self.session.flush()
        logger.info(
            "package_rejected",
            extra={"unlocked_links": len(package.scenario_links)},
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_task(
        self,
        package: DecisionPackage,
        task_type: TaskType,
        assignment: Assignment,
        actor: Actor,
        due_date: date | None = None,
    ) -> ApprovalTask:
        task = ApprovalTask(
            package_id=package.id,
            task_type=task_type.value,
            status=TaskStatus.PENDING.value,
            due_date=due_date,
            created_by_id=actor.id,
        )
        task.assignment = assignment
        self.session.add(task)
        return task

    def _notify_assignment(
        self, task: ApprovalTask, rfq: Rfq, package: DecisionPackage
    ) -> None:
        match task.assignment:
            case AssignedToUser(user_id=user_id):
                recipient_id, recipient_role = user_id, None
            case AssignedToRolePool(role=role):
                recipient_id, recipient_role = None, role
        self.notifications.enqueue(
            self.session,
            Notification(
                kind=NotificationKind.ASSIGNMENT_CREATED,
                task_id=task.id,
                task_type=task.type_enum,
                rfq_name=rfq.name,
                package_name=package.name,
                recipient_id=recipient_id,
                recipient_role=recipient_role,
                due_date=task.due_date,
            ),
        )
