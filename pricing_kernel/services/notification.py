"""
pricing_kernel.services.notification -- Post-commit approval notifications.

Responsibility:
    Queue notifications about task assignments and decisions on the
    session and deliver them only after the surrounding transaction
    commits.  Delivery is best-effort.

Architecture position:
    Kernel > Services.  The ``Notifier`` protocol is the seam to an email
    or chat integration living outside the kernel.

Invariants enforced:
    - Nothing is sent for a transaction that rolls back.
    - A failing notifier never affects the committed workflow state;
      each failure is logged and the remaining notifications still go out.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Protocol
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import Session

from pricing_kernel.domain.actor import Role
from pricing_kernel.domain.approval import TaskStatus, TaskType
from pricing_kernel.logging_config import get_logger

logger = get_logger("services.notification")

_QUEUE_KEY = "pricing_pending_notifications"
_HOOKED_KEY = "pricing_notification_hooks"


class NotificationKind(str, Enum):
    ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
    DECISION_RECORDED = "DECISION_RECORDED"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    task_id: UUID
    task_type: TaskType
    rfq_name: str
    package_name: str
    recipient_id: UUID | None = None
    recipient_role: Role | None = None
    decision: TaskStatus | None = None
    comment: str | None = None
    due_date: date | None = None


class Notifier(Protocol):
    def send(self, notification: Notification) -> None:
        ...


class LoggingNotifier:
    """Default notifier: records each notification in the structured log."""

    def send(self, notification: Notification) -> None:
        logger.info(
            "notification_sent",
            extra={
                "kind": notification.kind.value,
                "task_id": str(notification.task_id),
                "task_type": notification.task_type.value,
                "recipient_id": (
                    str(notification.recipient_id) if notification.recipient_id else None
                ),
                "recipient_role": (
                    notification.recipient_role.value if notification.recipient_role else None
                ),
                "decision": notification.decision.value if notification.decision else None,
                "due_date": notification.due_date,
            },
        )


class NotificationDispatcher:
    """Defers notifications until the session commits."""

    def __init__(self, notifier: Notifier | None = None):
        self.notifier = notifier or LoggingNotifier()

    def enqueue(self, session: Session, notification: Notification) -> None:
        self._install_hooks(session)
        session.info.setdefault(_QUEUE_KEY, []).append(notification)

    def pending(self, session: Session) -> list[Notification]:
        return list(session.info.get(_QUEUE_KEY, []))

    def _install_hooks(self, session: Session) -> None:
        if session.info.get(_HOOKED_KEY):
            return
        session.info[_HOOKED_KEY] = True
        event.listen(session, "after_commit", self._after_commit)
        event.listen(session, "after_rollback", self._after_rollback)

    def _after_commit(self, session: Session) -> None:
        queued = session.info.pop(_QUEUE_KEY, [])
        for notification in queued:
            try:
                self.notifier.send(notification)
            except Exception:
                logger.warning(
                    "notification_failed",
                    exc_info=True,
                    extra={
                        "kind": notification.kind.value,
                        "task_id": str(notification.task_id),
                    },
                )

    def _after_rollback(self, session: Session) -> None:
        dropped = session.info.pop(_QUEUE_KEY, [])
        if dropped:
            logger.info("notifications_discarded", extra={"count": len(dropped)})
