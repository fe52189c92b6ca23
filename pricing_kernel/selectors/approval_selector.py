"""
Module: pricing_kernel.selectors.approval_selector
Responsibility: Read-side queries over approval tasks: a user's inbox,
    the pool of claimable tasks, and per-package task lists and rollups.

Invariants enforced:
    - Technical reviewers only ever see TECH tasks.
    - Only management roles see the claimable BUDGET/OVERALL pool.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import and_, case, or_, select

from pricing_kernel.domain.actor import Actor, Role
from pricing_kernel.domain.approval import (
    ApprovalTaskInfo,
    PackageApprovalStatus,
    PackageStatus,
    TaskStatus,
    TaskType,
    summarize_approval,
)
from pricing_kernel.exceptions import EntityNotFoundError
from pricing_kernel.models.approval import ApprovalTask
from pricing_kernel.models.decision_package import DecisionPackage
from pricing_kernel.selectors.base import BaseSelector

# PENDING first, then decided tasks.
_STATUS_ORDER = case(
    (ApprovalTask.status == TaskStatus.PENDING.value, 0),
    else_=1,
)


class ApprovalSelector(BaseSelector):

    def tasks_for_actor(self, actor: Actor) -> list[ApprovalTaskInfo]:
        """Tasks assigned to the actor or pooled for the actor's role."""
        stmt = (
            select(ApprovalTask)
            .where(
                or_(
                    ApprovalTask.assigned_to_id == actor.id,
                    and_(
                        ApprovalTask.assigned_to_id.is_(None),
                        ApprovalTask.assigned_to_role == actor.role.value,
                    ),
                )
            )
            .order_by(
                _STATUS_ORDER,
                ApprovalTask.due_date.is_(None),
                ApprovalTask.due_date,
                ApprovalTask.created_at.desc(),
            )
        )
        if actor.role == Role.TECHNICAL_REVIEWER:
            stmt = stmt.where(ApprovalTask.task_type == TaskType.TECH.value)
        return [t.to_dto() for t in self.session.execute(stmt).scalars()]

    def available_tasks(
        self, actor: Actor, management_roles: frozenset[Role]
    ) -> list[ApprovalTaskInfo]:
        """Unassigned pending BUDGET/OVERALL tasks management may claim."""
        if actor.role not in management_roles:
            return []
        stmt = (
            select(ApprovalTask)
            .where(
                ApprovalTask.assigned_to_id.is_(None),
                ApprovalTask.status == TaskStatus.PENDING.value,
                ApprovalTask.task_type.in_(
                    [TaskType.BUDGET.value, TaskType.OVERALL.value]
                ),
            )
            .order_by(
                ApprovalTask.due_date.is_(None),
                ApprovalTask.due_date,
                ApprovalTask.created_at,
            )
        )
        return [t.to_dto() for t in self.session.execute(stmt).scalars()]

    def tasks_for_package(self, package_id: UUID) -> list[ApprovalTaskInfo]:
        stmt = (
            select(ApprovalTask)
            .where(ApprovalTask.package_id == package_id)
            .order_by(ApprovalTask.created_at, ApprovalTask.task_type)
        )
        return [t.to_dto() for t in self.session.execute(stmt).scalars()]

    def package_status(self, package_id: UUID) -> PackageApprovalStatus:
        package = self.session.get(DecisionPackage, package_id)
        if package is None:
            raise EntityNotFoundError("DecisionPackage", str(package_id))
        return summarize_approval(
            package_id=package_id,
            package_status=PackageStatus(package.status),
            tasks=self.tasks_for_package(package_id),
        )
