"""Cascading deletion protocols.

Each protocol is a :class:`CascadePlan`, an ordered tuple of
:class:`CascadeStep` records. A step names the table it sweeps and builds its
``WHERE`` clause from the id of the entity being deleted. Children are always
listed before the rows they reference, and the entity itself comes last.

``execute_plan`` runs every step in one transaction. On failure the whole
unit is rolled back, so the parent stays intact, and the error surfaces as
:class:`~collabhub.errors.DependencyError`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, Iterable

import structlog
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from .errors import DependencyError
from .models import (
    Base,
    Document,
    Note,
    Notification,
    Project,
    ProjectMember,
    SubTask,
    Task,
    User,
)
from .storage.blob import BlobStore, BlobStoreError

__all__ = [
    "CascadeStep",
    "CascadePlan",
    "BlobRelease",
    "PROJECT_PLAN",
    "TASK_PLAN",
    "USER_PLAN",
    "execute_plan",
    "release_blobs",
]

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CascadeStep:
    label: str
    model: type[Base]
    where: Callable[[uuid.UUID], ColumnElement[bool]]


@dataclass(frozen=True, slots=True)
class CascadePlan:
    name: str
    steps: tuple[CascadeStep, ...]

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(step.label for step in self.steps)

    def run(self, session: Session, subject_id: uuid.UUID) -> dict[str, int]:
        """Execute the steps in order inside the caller's transaction."""
        counts: dict[str, int] = {}
        for step in self.steps:
            ids = session.scalars(select(step.model.id).where(step.where(subject_id))).all()
            if ids:
                session.execute(delete(step.model).where(step.model.id.in_(ids)))
            counts[step.label] = len(ids)
        return counts


@dataclass(frozen=True, slots=True)
class BlobRelease:
    blob_id: str
    kind: str


def _project_task_ids(project_id: uuid.UUID):
    return select(Task.id).where(Task.project_id == project_id)


def _tasks_assigned_to(user_id: uuid.UUID):
    return select(Task.id).where(Task.assigned_to == user_id)


def _tasks_assigned_by(user_id: uuid.UUID):
    return select(Task.id).where(Task.assigned_by == user_id)


PROJECT_PLAN = CascadePlan(
    name="project",
    steps=(
        CascadeStep("members", ProjectMember, lambda pid: ProjectMember.project_id == pid),
        CascadeStep("sub_tasks", SubTask, lambda pid: SubTask.task_id.in_(_project_task_ids(pid))),
        CascadeStep("tasks", Task, lambda pid: Task.project_id == pid),
        CascadeStep("notes", Note, lambda pid: Note.project_id == pid),
        CascadeStep("documents", Document, lambda pid: Document.project_id == pid),
        CascadeStep("project", Project, lambda pid: Project.id == pid),
    ),
)

TASK_PLAN = CascadePlan(
    name="task",
    steps=(
        CascadeStep("sub_tasks", SubTask, lambda tid: SubTask.task_id == tid),
        CascadeStep("task", Task, lambda tid: Task.id == tid),
    ),
)

# Tasks assigned to or by the user are removed outright; their sub-tasks go
# first so nothing is left pointing at a removed task.
USER_PLAN = CascadePlan(
    name="user",
    steps=(
        CascadeStep("project_memberships", ProjectMember, lambda uid: ProjectMember.user_id == uid),
        CascadeStep(
            "task_sub_tasks",
            SubTask,
            lambda uid: or_(
                SubTask.task_id.in_(_tasks_assigned_to(uid)),
                SubTask.task_id.in_(_tasks_assigned_by(uid)),
            ),
        ),
        CascadeStep("assigned_tasks", Task, lambda uid: Task.assigned_to == uid),
        CascadeStep("assigned_by_tasks", Task, lambda uid: Task.assigned_by == uid),
        CascadeStep("sub_tasks", SubTask, lambda uid: SubTask.created_by == uid),
        CascadeStep("notes", Note, lambda uid: Note.created_by == uid),
        CascadeStep("notifications", Notification, lambda uid: Notification.user_id == uid),
        CascadeStep("user", User, lambda uid: User.id == uid),
    ),
)


def execute_plan(session: Session, plan: CascadePlan, subject_id: uuid.UUID) -> dict[str, int]:
    """Run ``plan`` for ``subject_id`` and commit, or roll back everything."""
    try:
        counts = plan.run(session, subject_id)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(
            "cascade_failed",
            plan=plan.name,
            subject_id=str(subject_id),
            rolled_back=True,
            inconsistency=True,
            error=str(exc),
        )
        raise DependencyError(f"{plan.name} deletion failed") from exc
    return counts


def release_blobs(blob_store: BlobStore, releases: Iterable[BlobRelease]) -> list[BlobRelease]:
    """Delete blobs whose metadata rows are already gone.

    Every release is attempted. Failures cannot be undone at this point, so
    each one is logged as an orphaned blob and returned to the caller.
    """
    failed: list[BlobRelease] = []
    for release in releases:
        try:
            blob_store.delete(release.blob_id, release.kind)
        except BlobStoreError as exc:
            logger.error(
                "blob_release_failed",
                blob_id=release.blob_id,
                kind=release.kind,
                inconsistency=True,
                error=str(exc),
            )
            failed.append(release)
    return failed
