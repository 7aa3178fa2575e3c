"""Post-commit notification hooks.

Mutating operations return ``NotificationEvent`` values next to their result.
Once the primary transaction has committed, the service hands them to
:class:`NotificationEmitter`, which writes each one in its own session. A
failure there is logged and dropped; it never reaches the caller and never
undoes the operation that produced the event.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import structlog
from sqlalchemy.orm import Session

from .models import Notification, NotificationType, Project, Task

__all__ = ["NotificationEvent", "NotificationEmitter", "task_assigned_event"]

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class NotificationEvent:
    recipient_id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    link: Optional[str] = None
    related_project_id: Optional[uuid.UUID] = None
    related_task_id: Optional[uuid.UUID] = None
    related_user_id: Optional[uuid.UUID] = None


def task_assigned_event(
    task: Task, project: Project, actor_id: uuid.UUID
) -> Optional[NotificationEvent]:
    """Event for a new assignment, or ``None`` when users assign themselves."""
    if task.assigned_to == actor_id:
        return None
    return NotificationEvent(
        recipient_id=task.assigned_to,
        type=NotificationType.TASK_ASSIGNED,
        title="New Task Assigned",
        message=f'You have been assigned to "{task.title}" in {project.name}',
        link=f"/projects/{project.id}?tab=tasks",
        related_project_id=project.id,
        related_task_id=task.id,
        related_user_id=actor_id,
    )


class NotificationEmitter:
    """Best-effort writer for notification events."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def emit(self, event: NotificationEvent) -> None:
        session = None
        try:
            session = self._session_factory()
            session.add(
                Notification(
                    user_id=event.recipient_id,
                    type=event.type,
                    title=event.title,
                    message=event.message,
                    link=event.link,
                    related_project_id=event.related_project_id,
                    related_task_id=event.related_task_id,
                    related_user_id=event.related_user_id,
                )
            )
            session.commit()
        except Exception as exc:  # noqa: BLE001 - emitter failures never propagate
            if session is not None:
                session.rollback()
            logger.warning(
                "notification_emit_failed",
                recipient_id=str(event.recipient_id),
                type=event.type.value,
                error=str(exc),
            )
        finally:
            if session is not None:
                session.close()

    def emit_all(self, events: Iterable[Optional[NotificationEvent]]) -> None:
        for event in events:
            if event is not None:
                self.emit(event)
