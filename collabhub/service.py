"""Service layer for the collaboration backend.

Business rules:
- access evaluation before any write (``collabhub.access``)
- membership graph invariants (``collabhub.invariants``)
- cascading deletes (``collabhub.cascade``)
- post-commit notifications (``collabhub.notifications``)
"""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass, field
from typing import Optional

import structlog
from sqlalchemy import and_, case, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from . import schemas
from .access import (
    SUBTASK_MEMBER_FIELDS,
    TASK_MEMBER_FIELDS,
    Principal,
    SuperAdminGrant,
    can_manage_document,
    check_field_update,
    evaluate,
    find_membership,
)
from .cascade import PROJECT_PLAN, TASK_PLAN, BlobRelease, execute_plan, release_blobs
from .config import CollabSettings
from .errors import (
    CollabError,
    DependencyError,
    Forbidden,
    InvalidOperation,
    NotFound,
    ValidationFailed,
)
from .invariants import (
    classify_file_type,
    ensure_assignee_eligible,
    ensure_can_leave,
    ensure_no_project_admin,
    ensure_not_member,
    ensure_project_name_available,
    ensure_username_available,
    guarded_flush,
    require_text,
    translate_integrity_error,
)
from .models import (
    Base,
    Document,
    Note,
    Notification,
    Project,
    ProjectMember,
    ProjectRole,
    SubTask,
    Task,
    TaskStatus,
    User,
    normalize_project_name,
)
from .notifications import NotificationEmitter, NotificationEvent, task_assigned_event
from .storage.blob import BlobStore, BlobStoreError

__all__ = [
    "SUPER_ADMIN_ROLE",
    "SEARCH_LIMIT",
    "CollabDatabase",
    "CollabService",
    "ProjectSummary",
    "ProjectDetail",
    "TaskSummary",
    "TaskDetail",
    "NotificationPage",
    "init_engine",
]

logger = structlog.get_logger(__name__)

SUPER_ADMIN_ROLE = "SUPER_ADMIN"
SEARCH_LIMIT = 10
SUBTASK_NULLABLE_FIELDS = frozenset({"assigned_to"})


def _normalize_database_url(database_url: str) -> str:
    # psycopg 3 is the only PostgreSQL driver we ship
    if database_url.startswith("postgres://"):
        return "postgresql+psycopg://" + database_url[len("postgres://") :]
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return database_url


def _is_sqlite_memory(database_url: str) -> bool:
    url = make_url(database_url)
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine(settings: CollabSettings) -> Engine:
    """Create an SQLAlchemy engine with sensible defaults."""

    database_url = _normalize_database_url(settings.database_url)

    connect_args = {}
    engine_kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if _is_sqlite_memory(database_url):
            # one shared connection, otherwise every checkout is a new empty database
            engine_kwargs["poolclass"] = StaticPool
    if connect_args:
        engine_kwargs["connect_args"] = connect_args
    engine = create_engine(database_url, pool_pre_ping=True, **engine_kwargs)
    if database_url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


class CollabDatabase:
    """Session factory wrapper."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    def session(self) -> Session:
        return self._session_factory()

    def create_all(self) -> None:
        """Create tables (development and tests)."""
        Base.metadata.create_all(self.engine)


@dataclass(slots=True)
class ProjectSummary:
    project: Project
    role: Optional[str]
    member_count: int


@dataclass(slots=True)
class ProjectDetail:
    project: Project
    role: str
    stats: dict[str, int]


@dataclass(slots=True)
class TaskSummary:
    task: Task
    total_sub_tasks: int = 0
    completed_sub_tasks: int = 0


@dataclass(slots=True)
class TaskDetail:
    task: Task
    sub_tasks: list[SubTask] = field(default_factory=list)

    @property
    def total_sub_tasks(self) -> int:
        return len(self.sub_tasks)

    @property
    def completed_sub_tasks(self) -> int:
        return sum(1 for sub_task in self.sub_tasks if sub_task.is_completed)


@dataclass(slots=True)
class NotificationPage:
    notifications: list[Notification]
    unread_count: int


def _provided_changes(request, current, nullable: frozenset[str] = frozenset()) -> dict:
    """Fields present in ``request`` whose value differs from ``current``.

    An explicit null is a change only for fields named in ``nullable``.
    """
    changes = {}
    for name in request.model_fields_set:
        value = getattr(request, name)
        if value is None and name not in nullable:
            continue
        if getattr(current, name) != value:
            changes[name] = value
    return changes


class CollabService:
    """Project collaboration business logic."""

    def __init__(
        self,
        session: Session,
        settings: CollabSettings,
        blob_store: BlobStore,
        emitter: Optional[NotificationEmitter] = None,
    ):
        self.session = session
        self.settings = settings
        self.blob_store = blob_store
        self.emitter = emitter

    # ========================================================================
    # Transaction helpers
    # ========================================================================

    def _commit(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise translate_integrity_error(exc) from None
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("datastore_write_failed", error=str(exc))
            raise DependencyError() from exc

    def _after_commit(self, events: list[Optional[NotificationEvent]]) -> None:
        if self.emitter is not None:
            self.emitter.emit_all(events)

    # ========================================================================
    # Lookups
    # ========================================================================

    def _get_project(self, project_id: uuid.UUID) -> Project:
        project = self.session.get(Project, project_id)
        if project is None:
            raise NotFound("project not found")
        return project

    def _get_task(self, project_id: uuid.UUID, task_id: uuid.UUID) -> Task:
        task = (
            self.session.execute(
                select(Task).where(and_(Task.id == task_id, Task.project_id == project_id))
            )
            .scalars()
            .first()
        )
        if task is None:
            raise NotFound("task not found")
        return task

    def _get_sub_task(
        self, project_id: uuid.UUID, task_id: uuid.UUID, sub_task_id: uuid.UUID
    ) -> SubTask:
        sub_task = (
            self.session.execute(
                select(SubTask)
                .join(Task, Task.id == SubTask.task_id)
                .where(
                    and_(
                        SubTask.id == sub_task_id,
                        SubTask.task_id == task_id,
                        Task.project_id == project_id,
                    )
                )
            )
            .scalars()
            .first()
        )
        if sub_task is None:
            raise NotFound("sub-task not found")
        return sub_task

    def _get_note(self, project_id: uuid.UUID, note_id: uuid.UUID) -> Note:
        note = (
            self.session.execute(
                select(Note).where(and_(Note.id == note_id, Note.project_id == project_id))
            )
            .scalars()
            .first()
        )
        if note is None:
            raise NotFound("note not found")
        return note

    def _get_document(self, project_id: uuid.UUID, document_id: uuid.UUID) -> Document:
        document = (
            self.session.execute(
                select(Document).where(
                    and_(Document.id == document_id, Document.project_id == project_id)
                )
            )
            .scalars()
            .first()
        )
        if document is None:
            raise NotFound("document not found")
        return document

    def _get_own_notification(
        self, notification_id: uuid.UUID, principal: Principal
    ) -> Notification:
        notification = (
            self.session.execute(
                select(Notification).where(
                    and_(
                        Notification.id == notification_id,
                        Notification.user_id == principal.user_id,
                    )
                )
            )
            .scalars()
            .first()
        )
        if notification is None:
            raise NotFound("notification not found")
        return notification

    def _member_counts(self, project_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
        if not project_ids:
            return {}
        rows = self.session.execute(
            select(ProjectMember.project_id, func.count())
            .where(ProjectMember.project_id.in_(project_ids))
            .group_by(ProjectMember.project_id)
        )
        return {project_id: count for project_id, count in rows}

    # ========================================================================
    # Projects
    # ========================================================================

    def create_project(
        self, request: schemas.ProjectCreateRequest, principal: Principal
    ) -> Project:
        """Create a project; the creator becomes its admin unless super admin."""
        name = require_text(request.name, "project name")
        ensure_project_name_available(self.session, name)

        project = Project(
            id=uuid.uuid4(),
            description=(request.description or "").strip(),
            created_by=principal.user_id,
        )
        project.rename(name)
        with guarded_flush(self.session):
            self.session.add(project)
        if not principal.is_super_admin:
            self.session.add(
                ProjectMember(
                    project_id=project.id,
                    user_id=principal.user_id,
                    role=ProjectRole.PROJECT_ADMIN,
                )
            )
        self._commit()
        logger.info("project_created", project_id=str(project.id), actor_id=str(principal.user_id))
        return project

    def list_projects(self, principal: Principal) -> list[ProjectSummary]:
        if principal.is_super_admin:
            projects = list(
                self.session.execute(select(Project).order_by(Project.created_at.desc()))
                .scalars()
            )
            roles = {project.id: SUPER_ADMIN_ROLE for project in projects}
        else:
            rows = self.session.execute(
                select(Project, ProjectMember.role)
                .join(ProjectMember, ProjectMember.project_id == Project.id)
                .where(ProjectMember.user_id == principal.user_id)
                .order_by(Project.created_at.desc())
            ).all()
            projects = [project for project, _ in rows]
            roles = {project.id: role.value for project, role in rows}

        counts = self._member_counts([project.id for project in projects])
        return [
            ProjectSummary(
                project=project,
                role=roles.get(project.id),
                member_count=counts.get(project.id, 0),
            )
            for project in projects
        ]

    def get_project(self, project_id: uuid.UUID, principal: Principal) -> ProjectDetail:
        grant = evaluate(self.session, principal, project_id)
        project = self._get_project(project_id)
        role = SUPER_ADMIN_ROLE if isinstance(grant, SuperAdminGrant) else grant.role.value

        task_counts = self.session.execute(
            select(
                func.count(Task.id),
                func.coalesce(
                    func.sum(case((Task.status == TaskStatus.IN_PROGRESS, 1), else_=0)), 0
                ),
            ).where(Task.project_id == project_id)
        ).one()
        total_notes = self.session.execute(
            select(func.count(Note.id)).where(Note.project_id == project_id)
        ).scalar_one()
        members = self._member_counts([project_id]).get(project_id, 0)
        return ProjectDetail(
            project=project,
            role=role,
            stats={
                "total_tasks": int(task_counts[0]),
                "in_progress": int(task_counts[1]),
                "total_notes": int(total_notes),
                "members": members,
            },
        )

    def update_project(
        self,
        project_id: uuid.UUID,
        request: schemas.ProjectUpdateRequest,
        principal: Principal,
    ) -> Project:
        evaluate(self.session, principal, project_id, ProjectRole.PROJECT_ADMIN)
        project = self._get_project(project_id)

        if request.name is not None:
            name = require_text(request.name, "project name")
            if normalize_project_name(name) != project.name_key:
                ensure_project_name_available(self.session, name, exclude_project_id=project.id)
            project.rename(name)
        if request.description is not None:
            project.description = request.description.strip()

        self._commit()
        return project

    def toggle_project_completion(
        self, project_id: uuid.UUID, principal: Principal
    ) -> Project:
        evaluate(self.session, principal, project_id, ProjectRole.PROJECT_ADMIN)
        project = self._get_project(project_id)
        project.is_completed = not project.is_completed
        project.completed_at = (
            dt.datetime.now(dt.timezone.utc) if project.is_completed else None
        )
        self._commit()
        return project

    def delete_project(self, project_id: uuid.UUID, principal: Principal) -> dict[str, int]:
        """Delete a project and everything it owns.

        The database sweep is atomic. Document blobs are released after the
        commit; if any release fails the project is still gone, the orphans
        are logged and ``DependencyError`` is raised.
        """
        evaluate(self.session, principal, project_id, ProjectRole.PROJECT_ADMIN)
        self._get_project(project_id)

        releases = [
            BlobRelease(blob_id=document.file_ref, kind=document.blob_kind)
            for document in self.session.execute(
                select(Document).where(Document.project_id == project_id)
            ).scalars()
        ]
        counts = execute_plan(self.session, PROJECT_PLAN, project_id)
        logger.info(
            "project_deleted",
            project_id=str(project_id),
            actor_id=str(principal.user_id),
            **counts,
        )

        failed = release_blobs(self.blob_store, releases)
        if failed:
            raise DependencyError(
                f"project deleted but {len(failed)} document file(s) could not be released"
            )
        return counts

    # ========================================================================
    # Membership
    # ========================================================================

    def list_members(self, project_id: uuid.UUID, principal: Principal) -> list[ProjectMember]:
        evaluate(self.session, principal, project_id)
        self._get_project(project_id)
        admin_first = case((ProjectMember.role == ProjectRole.PROJECT_ADMIN, 0), else_=1)
        stmt = (
            select(ProjectMember)
            .where(ProjectMember.project_id == project_id)
            .order_by(admin_first, ProjectMember.created_at)
        )
        return list(self.session.execute(stmt).scalars())

    def add_member(
        self,
        project_id: uuid.UUID,
        request: schemas.MemberAddRequest,
        principal: Principal,
    ) -> ProjectMember:
        grant = evaluate(self.session, principal, project_id, ProjectRole.PROJECT_ADMIN)
        self._get_project(project_id)

        email = require_text(request.email, "email").lower()
        user = (
            self.session.execute(select(User).where(User.email == email)).scalars().first()
        )
        if user is None:
            raise NotFound("user not found")
        if not isinstance(grant, SuperAdminGrant) and not user.is_email_verified:
            raise InvalidOperation("user has not verified their email")

        ensure_not_member(self.session, user.id, project_id)
        if request.role == ProjectRole.PROJECT_ADMIN:
            ensure_no_project_admin(self.session, project_id)

        member = ProjectMember(project_id=project_id, user_id=user.id, role=request.role)
        self.session.add(member)
        self._commit()
        logger.info(
            "member_added",
            project_id=str(project_id),
            user_id=str(user.id),
            role=request.role.value,
        )
        return member

    def update_member_role(
        self,
        project_id: uuid.UUID,
        user_id: uuid.UUID,
        request: schemas.MemberUpdateRequest,
        principal: Principal,
    ) -> ProjectMember:
        grant = evaluate(self.session, principal, project_id, ProjectRole.PROJECT_ADMIN)
        self._get_project(project_id)
        member = find_membership(self.session, user_id, project_id)
        if member is None:
            raise NotFound("member not found")
        if member.role == ProjectRole.PROJECT_ADMIN and not isinstance(grant, SuperAdminGrant):
            raise Forbidden("insufficient role")
        if member.role == request.role:
            return member

        if request.role == ProjectRole.PROJECT_ADMIN:
            ensure_no_project_admin(self.session, project_id, exclude_member_id=member.id)
        member.role = request.role
        self._commit()
        logger.info(
            "member_role_changed",
            project_id=str(project_id),
            user_id=str(user_id),
            role=request.role.value,
        )
        return member

    def remove_member(
        self, project_id: uuid.UUID, user_id: uuid.UUID, principal: Principal
    ) -> None:
        grant = evaluate(self.session, principal, project_id, ProjectRole.PROJECT_ADMIN)
        self._get_project(project_id)
        member = find_membership(self.session, user_id, project_id)
        if member is None:
            raise NotFound("member not found")
        if member.role == ProjectRole.PROJECT_ADMIN and not isinstance(grant, SuperAdminGrant):
            raise Forbidden("insufficient role")
        self.session.delete(member)
        self._commit()
        logger.info("member_removed", project_id=str(project_id), user_id=str(user_id))

    def leave_project(self, project_id: uuid.UUID, principal: Principal) -> None:
        member = find_membership(self.session, principal.user_id, project_id)
        if member is None:
            raise NotFound("not a member of this project")
        ensure_can_leave(self.session, member)
        self.session.delete(member)
        self._commit()
        logger.info("member_left", project_id=str(project_id), user_id=str(principal.user_id))

    # ========================================================================
    # Tasks
    # ========================================================================

    def list_tasks(self, project_id: uuid.UUID, principal: Principal) -> list[TaskSummary]:
        evaluate(self.session, principal, project_id)
        self._get_project(project_id)
        tasks = list(
            self.session.execute(
                select(Task)
                .where(Task.project_id == project_id)
                .order_by(Task.created_at.desc())
            ).scalars()
        )
        if not tasks:
            return []

        rows = self.session.execute(
            select(
                SubTask.task_id,
                func.count(SubTask.id),
                func.coalesce(func.sum(case((SubTask.is_completed.is_(True), 1), else_=0)), 0),
            )
            .where(SubTask.task_id.in_([task.id for task in tasks]))
            .group_by(SubTask.task_id)
        )
        counts = {task_id: (int(total), int(done)) for task_id, total, done in rows}
        return [
            TaskSummary(
                task=task,
                total_sub_tasks=counts.get(task.id, (0, 0))[0],
                completed_sub_tasks=counts.get(task.id, (0, 0))[1],
            )
            for task in tasks
        ]

    def get_task(
        self, project_id: uuid.UUID, task_id: uuid.UUID, principal: Principal
    ) -> TaskDetail:
        evaluate(self.session, principal, project_id)
        task = self._get_task(project_id, task_id)
        return TaskDetail(task=task, sub_tasks=list(task.sub_tasks))

    def create_task(
        self,
        project_id: uuid.UUID,
        request: schemas.TaskCreateRequest,
        principal: Principal,
    ) -> Task:
        grant = evaluate(self.session, principal, project_id, ProjectRole.PROJECT_ADMIN)
        project = self._get_project(project_id)
        title = require_text(request.title, "task title")
        ensure_assignee_eligible(self.session, grant, project_id, request.assigned_to)

        task = Task(
            id=uuid.uuid4(),
            project_id=project_id,
            title=title,
            description=(request.description or "").strip(),
            assigned_to=request.assigned_to,
            assigned_by=principal.user_id,
            status=TaskStatus.TODO,
        )
        self.session.add(task)
        self._commit()

        self._after_commit([task_assigned_event(task, project, principal.user_id)])
        return task

    def update_task(
        self,
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        request: schemas.TaskUpdateRequest,
        principal: Principal,
    ) -> Task:
        """Apply the provided changes.

        Members may only move ``status``; anything else needs an admin grant.
        """
        grant = evaluate(self.session, principal, project_id)
        task = self._get_task(project_id, task_id)

        changes = _provided_changes(request, task)
        check_field_update(grant, changes, TASK_MEMBER_FIELDS)
        if not changes:
            return task

        events: list[Optional[NotificationEvent]] = []
        if "title" in changes:
            task.title = require_text(changes["title"], "task title")
        if "description" in changes:
            task.description = changes["description"].strip()
        if "status" in changes:
            task.status = changes["status"]
        if "assigned_to" in changes:
            ensure_assignee_eligible(self.session, grant, project_id, changes["assigned_to"])
            task.assigned_to = changes["assigned_to"]

        self._commit()
        if "assigned_to" in changes:
            project = self._get_project(project_id)
            events.append(task_assigned_event(task, project, principal.user_id))
        self._after_commit(events)
        return task

    def delete_task(
        self, project_id: uuid.UUID, task_id: uuid.UUID, principal: Principal
    ) -> dict[str, int]:
        evaluate(self.session, principal, project_id, ProjectRole.PROJECT_ADMIN)
        self._get_task(project_id, task_id)
        counts = execute_plan(self.session, TASK_PLAN, task_id)
        logger.info(
            "task_deleted",
            project_id=str(project_id),
            task_id=str(task_id),
            actor_id=str(principal.user_id),
            **counts,
        )
        return counts

    # ========================================================================
    # Sub-tasks
    # ========================================================================

    def create_sub_task(
        self,
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        request: schemas.SubTaskCreateRequest,
        principal: Principal,
    ) -> SubTask:
        grant = evaluate(self.session, principal, project_id, ProjectRole.PROJECT_ADMIN)
        self._get_task(project_id, task_id)
        title = require_text(request.title, "sub-task title")
        if request.assigned_to is not None:
            ensure_assignee_eligible(self.session, grant, project_id, request.assigned_to)

        sub_task = SubTask(
            task_id=task_id,
            title=title,
            assigned_to=request.assigned_to,
            created_by=principal.user_id,
        )
        self.session.add(sub_task)
        self._commit()
        return sub_task

    def update_sub_task(
        self,
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        sub_task_id: uuid.UUID,
        request: schemas.SubTaskUpdateRequest,
        principal: Principal,
    ) -> SubTask:
        grant = evaluate(self.session, principal, project_id)
        sub_task = self._get_sub_task(project_id, task_id, sub_task_id)

        changes = _provided_changes(request, sub_task, nullable=SUBTASK_NULLABLE_FIELDS)
        check_field_update(grant, changes, SUBTASK_MEMBER_FIELDS)
        if not changes:
            return sub_task

        if "title" in changes:
            sub_task.title = require_text(changes["title"], "sub-task title")
        if "assigned_to" in changes:
            if changes["assigned_to"] is not None:
                ensure_assignee_eligible(self.session, grant, project_id, changes["assigned_to"])
            sub_task.assigned_to = changes["assigned_to"]
        if "is_completed" in changes:
            sub_task.is_completed = changes["is_completed"]
        self._commit()
        return sub_task

    def delete_sub_task(
        self,
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        sub_task_id: uuid.UUID,
        principal: Principal,
    ) -> None:
        evaluate(self.session, principal, project_id, ProjectRole.PROJECT_ADMIN)
        sub_task = self._get_sub_task(project_id, task_id, sub_task_id)
        self.session.delete(sub_task)
        self._commit()

    # ========================================================================
    # Notes
    # ========================================================================

    def list_notes(self, project_id: uuid.UUID, principal: Principal) -> list[Note]:
        evaluate(self.session, principal, project_id)
        self._get_project(project_id)
        stmt = (
            select(Note).where(Note.project_id == project_id).order_by(Note.created_at.desc())
        )
        return list(self.session.execute(stmt).scalars())

    def get_note(self, project_id: uuid.UUID, note_id: uuid.UUID, principal: Principal) -> Note:
        evaluate(self.session, principal, project_id)
        return self._get_note(project_id, note_id)

    def create_note(
        self,
        project_id: uuid.UUID,
        request: schemas.NoteCreateRequest,
        principal: Principal,
    ) -> Note:
        evaluate(self.session, principal, project_id)
        self._get_project(project_id)
        note = Note(
            project_id=project_id,
            content=require_text(request.content, "note content"),
            created_by=principal.user_id,
        )
        self.session.add(note)
        self._commit()
        return note

    def update_note(
        self,
        project_id: uuid.UUID,
        note_id: uuid.UUID,
        request: schemas.NoteUpdateRequest,
        principal: Principal,
    ) -> Note:
        evaluate(self.session, principal, project_id, ProjectRole.PROJECT_ADMIN)
        note = self._get_note(project_id, note_id)
        note.content = require_text(request.content, "note content")
        self._commit()
        return note

    def delete_note(
        self, project_id: uuid.UUID, note_id: uuid.UUID, principal: Principal
    ) -> None:
        evaluate(self.session, principal, project_id, ProjectRole.PROJECT_ADMIN)
        note = self._get_note(project_id, note_id)
        self.session.delete(note)
        self._commit()

    # ========================================================================
    # Documents
    # ========================================================================

    def list_documents(self, project_id: uuid.UUID, principal: Principal) -> list[Document]:
        evaluate(self.session, principal, project_id)
        self._get_project(project_id)
        stmt = (
            select(Document)
            .where(Document.project_id == project_id)
            .order_by(Document.created_at.desc())
        )
        return list(self.session.execute(stmt).scalars())

    def get_document(
        self, project_id: uuid.UUID, document_id: uuid.UUID, principal: Principal
    ) -> Document:
        evaluate(self.session, principal, project_id)
        return self._get_document(project_id, document_id)

    def upload_document(
        self,
        project_id: uuid.UUID,
        data: bytes,
        filename: str,
        mime_type: Optional[str],
        principal: Principal,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Document:
        """Store the bytes, then the metadata row.

        If the row cannot be written the blob is released again.
        """
        evaluate(self.session, principal, project_id)
        self._get_project(project_id)
        if not data:
            raise ValidationFailed("file is required")
        limit = self.settings.max_upload_bytes
        if len(data) > limit:
            raise ValidationFailed(f"file exceeds the {limit} byte upload limit")
        original_name = require_text(filename, "file name")
        mime_type = mime_type or "application/octet-stream"
        file_type = classify_file_type(mime_type)

        try:
            ref = self.blob_store.put(
                data,
                folder=f"project-documents/{project_id}",
                filename=original_name,
                content_type=mime_type,
            )
        except ValueError as exc:
            raise ValidationFailed(str(exc)) from exc
        except BlobStoreError as exc:
            logger.error("blob_upload_failed", project_id=str(project_id), error=str(exc))
            raise DependencyError() from exc

        document = Document(
            project_id=project_id,
            uploaded_by=principal.user_id,
            name=(name or "").strip() or original_name,
            original_name=original_name,
            description=(description or "").strip(),
            file_url=ref.url,
            file_ref=ref.id,
            file_type=file_type,
            file_size=len(data),
            mime_type=mime_type,
        )
        self.session.add(document)
        try:
            self._commit()
        except CollabError:
            release_blobs(self.blob_store, [BlobRelease(ref.id, document.blob_kind)])
            raise
        return document

    def update_document(
        self,
        project_id: uuid.UUID,
        document_id: uuid.UUID,
        request: schemas.DocumentUpdateRequest,
        principal: Principal,
    ) -> Document:
        grant = evaluate(self.session, principal, project_id)
        document = self._get_document(project_id, document_id)
        if not can_manage_document(grant, document):
            raise Forbidden("insufficient role")

        if request.name is not None:
            document.name = require_text(request.name, "document name")
        if request.description is not None:
            document.description = request.description.strip()
        self._commit()
        return document

    def delete_document(
        self, project_id: uuid.UUID, document_id: uuid.UUID, principal: Principal
    ) -> None:
        """Release the blob first; the row survives a failed release."""
        grant = evaluate(self.session, principal, project_id)
        document = self._get_document(project_id, document_id)
        if not can_manage_document(grant, document):
            raise Forbidden("insufficient role")

        try:
            self.blob_store.delete(document.file_ref, document.blob_kind)
        except BlobStoreError as exc:
            logger.error(
                "document_blob_delete_failed",
                document_id=str(document.id),
                blob_id=document.file_ref,
                error=str(exc),
            )
            raise DependencyError() from exc

        self.session.delete(document)
        self._commit()

    # ========================================================================
    # Notifications
    # ========================================================================

    def list_notifications(
        self,
        principal: Principal,
        limit: Optional[int] = None,
        read: Optional[bool] = None,
    ) -> NotificationPage:
        limit = limit or self.settings.notification_limit
        stmt = select(Notification).where(Notification.user_id == principal.user_id)
        if read is not None:
            stmt = stmt.where(Notification.read.is_(read))
        stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)

        unread_count = self.session.execute(
            select(func.count(Notification.id)).where(
                and_(
                    Notification.user_id == principal.user_id,
                    Notification.read.is_(False),
                )
            )
        ).scalar_one()
        return NotificationPage(
            notifications=list(self.session.execute(stmt).scalars()),
            unread_count=int(unread_count),
        )

    def mark_notification_read(
        self, notification_id: uuid.UUID, principal: Principal
    ) -> Notification:
        notification = self._get_own_notification(notification_id, principal)
        notification.read = True
        self._commit()
        return notification

    def mark_all_notifications_read(self, principal: Principal) -> int:
        unread = self.session.scalars(
            select(Notification).where(
                and_(
                    Notification.user_id == principal.user_id,
                    Notification.read.is_(False),
                )
            )
        ).all()
        for notification in unread:
            notification.read = True
        self._commit()
        return len(unread)

    def delete_notification(self, notification_id: uuid.UUID, principal: Principal) -> None:
        notification = self._get_own_notification(notification_id, principal)
        self.session.delete(notification)
        self._commit()

    # ========================================================================
    # Users
    # ========================================================================

    def update_own_profile(
        self, request: schemas.ProfileUpdateRequest, principal: Principal
    ) -> User:
        user = self.session.get(User, principal.user_id)
        if user is None:
            raise NotFound("user not found")

        if request.username is not None:
            username = require_text(request.username, "username").lower()
            if username != user.username:
                ensure_username_available(self.session, username, exclude_user_id=user.id)
                user.username = username
        if request.fullname is not None:
            user.fullname = request.fullname.strip() or None
        self._commit()
        return user

    def search_users(
        self,
        query: str,
        principal: Principal,
        project_id: Optional[uuid.UUID] = None,
    ) -> list[User]:
        """Match email, username or full name; never returns super admins."""
        term = (query or "").strip().lower()
        if not term:
            return []
        pattern = f"%{term}%"
        stmt = select(User).where(
            and_(
                User.is_super_admin.is_(False),
                or_(
                    User.email.like(pattern),
                    User.username.like(pattern),
                    func.lower(func.coalesce(User.fullname, "")).like(pattern),
                ),
            )
        )
        if project_id is not None:
            evaluate(self.session, principal, project_id)
            members = select(ProjectMember.user_id).where(ProjectMember.project_id == project_id)
            stmt = stmt.where(User.id.not_in(members))
        stmt = stmt.order_by(User.username).limit(SEARCH_LIMIT)
        return list(self.session.execute(stmt).scalars())
