"""
Module: pricing_kernel.models.approval
Responsibility: ORM persistence for approval tasks on decision packages.

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and exceptions only.

Invariants enforced:
    - Valid task type and status values (DB check constraints).
    - Exactly one of assigned_to_id / assigned_to_role is set (DB check
      constraint).
    - At most one OVERALL task per package (partial unique index on
      PostgreSQL and SQLite).
    - A decided task is never modified again (``before_update`` listener)
      and never deleted (``before_delete`` listener).

Failure modes:
    - IntegrityError on a second OVERALL task for the same package.
    - TaskAlreadyDecidedError on an ORM update or delete of a decided task.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.orm.attributes import get_history

from pricing_kernel.db.base import TrackedBase, UUIDString
from pricing_kernel.domain.approval import (
    ApprovalTaskInfo,
    Assignment,
    TaskStatus,
    TaskType,
    assignment_from_columns,
    assignment_to_columns,
)
from pricing_kernel.exceptions import TaskAlreadyDecidedError
from pricing_kernel.models.decision_package import DecisionPackage


class ApprovalTask(TrackedBase):
    """One approval track item of a submitted decision package."""

    __tablename__ = "approval_tasks"

    __table_args__ = (
        CheckConstraint(
            "task_type IN ('TECH', 'BUDGET', 'OVERALL')",
            name="ck_approval_tasks_type",
        ),
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED')",
            name="ck_approval_tasks_status",
        ),
        CheckConstraint(
            "(assigned_to_id IS NULL AND assigned_to_role IS NOT NULL) "
            "OR (assigned_to_id IS NOT NULL AND assigned_to_role IS NULL)",
            name="ck_approval_tasks_single_assignment",
        ),
        Index(
            "ix_approval_tasks_one_overall",
            "package_id",
            unique=True,
            postgresql_where=text("task_type = 'OVERALL'"),
            sqlite_where=text("task_type = 'OVERALL'"),
        ),
        Index("ix_approval_tasks_assignee", "assigned_to_id", "status"),
        Index("ix_approval_tasks_pool", "assigned_to_role", "status"),
    )

    package_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("decision_packages.id", ondelete="CASCADE"),
        nullable=False,
    )
    task_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TaskStatus.PENDING.value,
    )
    assigned_to_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    assigned_to_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    package: Mapped[DecisionPackage] = relationship()

    @property
    def type_enum(self) -> TaskType:
        return TaskType(self.task_type)

    @property
    def status_enum(self) -> TaskStatus:
        return TaskStatus(self.status)

    @property
    def assignment(self) -> Assignment:
        return assignment_from_columns(self.assigned_to_id, self.assigned_to_role)

    @assignment.setter
    def assignment(self, value: Assignment) -> None:
        self.assigned_to_id, self.assigned_to_role = assignment_to_columns(value)

    def __repr__(self) -> str:
        return f"<ApprovalTask {self.task_type} {self.status} package={self.package_id}>"

    def to_dto(self) -> ApprovalTaskInfo:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalTaskInfo(
            id=self.id,
            package_id=self.package_id,
            task_type=self.type_enum,
            status=self.status_enum,
            assignment=self.assignment,
            decided_by_id=self.decided_by_id,
            decided_at=self.decided_at,
            comment=self.comment,
            due_date=self.due_date,
            created_at=self.created_at,
        )


# =============================================================================
# ORM-Level Immutability for Decided Tasks
# =============================================================================


def _status_before_flush(target: ApprovalTask) -> str | None:
    history = get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return None


@event.listens_for(ApprovalTask, "before_update")
def prevent_decided_task_update(mapper, connection, target):
    """A task leaves PENDING exactly once."""
    previous = _status_before_flush(target)
    if previous is not None and previous != TaskStatus.PENDING.value:
        raise TaskAlreadyDecidedError(task_id=str(target.id), status=previous)


@event.listens_for(ApprovalTask, "before_delete")
def prevent_decided_task_delete(mapper, connection, target):
    if target.status != TaskStatus.PENDING.value:
        raise TaskAlreadyDecidedError(task_id=str(target.id), status=target.status)
