"""Super-admin surface: user management and system statistics."""

from __future__ import annotations

import datetime as dt
import uuid
from collections import Counter
from dataclasses import dataclass

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from . import schemas
from .access import Principal, require_super_admin
from .cascade import USER_PLAN, execute_plan
from .config import CollabSettings
from .errors import InvalidOperation, NotFound
from .invariants import (
    ensure_email_available,
    ensure_username_available,
    guarded_flush,
    require_text,
)
from .models import Note, Project, ProjectMember, SubTask, Task, TaskStatus, User

__all__ = ["AdminService", "UserSummary", "UserDetail", "UserDeletion", "provision_user"]

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class UserSummary:
    user: User
    project_count: int


@dataclass(slots=True)
class UserDetail:
    user: User
    memberships: list[tuple[ProjectMember, Project]]
    roles_count: dict[str, int]

    @property
    def total_projects(self) -> int:
        return len(self.memberships)


@dataclass(slots=True)
class UserDeletion:
    user_id: uuid.UUID
    username: str
    email: str
    counts: dict[str, int]


def _average(total: int, count: int) -> float:
    return round(total / count, 2) if count else 0.0


def provision_user(
    session: Session,
    email: str,
    username: str,
    fullname: str | None = None,
    *,
    super_admin: bool = False,
    verified: bool = False,
) -> tuple[User, bool]:
    """Create a user, or bring an existing one (matched by email) up to date.

    Returns ``(user, created)``. Used by the bootstrap CLI; flags are only
    ever raised, never cleared.
    """
    email = require_text(email, "email").lower()
    username = require_text(username, "username").lower()
    user = session.execute(select(User).where(User.email == email)).scalars().first()
    created = user is None

    with guarded_flush(session):
        if user is None:
            ensure_username_available(session, username)
            user = User(email=email, username=username)
            session.add(user)
        elif user.username != username:
            ensure_username_available(session, username, exclude_user_id=user.id)
            user.username = username
        if fullname is not None:
            user.fullname = fullname.strip() or None
        user.is_super_admin = user.is_super_admin or super_admin
        user.is_email_verified = user.is_email_verified or verified
    session.commit()
    logger.info(
        "user_provisioned",
        user_id=str(user.id),
        created=created,
        super_admin=user.is_super_admin,
    )
    return user, created


class AdminService:
    """Operations reserved for super admins."""

    def __init__(self, session: Session, settings: CollabSettings):
        self.session = session
        self.settings = settings

    def _get_user(self, user_id: uuid.UUID) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFound("user not found")
        return user

    def list_users(self, principal: Principal) -> list[UserSummary]:
        require_super_admin(principal)
        project_count = (
            select(func.count(ProjectMember.id))
            .where(ProjectMember.user_id == User.id)
            .correlate(User)
            .scalar_subquery()
        )
        rows = self.session.execute(
            select(User, project_count).order_by(User.created_at.desc())
        ).all()
        return [UserSummary(user=user, project_count=int(count)) for user, count in rows]

    def get_user(self, user_id: uuid.UUID, principal: Principal) -> UserDetail:
        require_super_admin(principal)
        user = self._get_user(user_id)
        rows = self.session.execute(
            select(ProjectMember, Project)
            .join(Project, Project.id == ProjectMember.project_id)
            .where(ProjectMember.user_id == user_id)
            .order_by(ProjectMember.created_at.desc())
        ).all()
        memberships = [(member, project) for member, project in rows]
        roles = Counter(member.role.value for member, _ in memberships)
        return UserDetail(user=user, memberships=memberships, roles_count=dict(roles))

    def update_user(
        self,
        user_id: uuid.UUID,
        request: schemas.AdminUserUpdateRequest,
        principal: Principal,
    ) -> User:
        require_super_admin(principal)
        user = self._get_user(user_id)

        with guarded_flush(self.session):
            if request.username is not None:
                username = require_text(request.username, "username").lower()
                if username != user.username:
                    ensure_username_available(self.session, username, exclude_user_id=user.id)
                    user.username = username
            if request.email is not None:
                email = require_text(request.email, "email").lower()
                if email != user.email:
                    ensure_email_available(self.session, email, exclude_user_id=user.id)
                    user.email = email
            if request.is_email_verified is not None:
                user.is_email_verified = request.is_email_verified
        self.session.commit()
        return user

    def delete_user(self, user_id: uuid.UUID, principal: Principal) -> UserDeletion:
        """Remove a user and everything that hangs off them.

        Super admins can neither delete themselves nor each other.
        """
        require_super_admin(principal)
        if user_id == principal.user_id:
            raise InvalidOperation("cannot delete your own account")
        user = self._get_user(user_id)
        if user.is_super_admin:
            raise InvalidOperation("cannot delete a super admin account")

        username, email = user.username, user.email
        logger.warning(
            "user_deletion_started",
            user_id=str(user_id),
            username=username,
            actor_id=str(principal.user_id),
        )
        counts = execute_plan(self.session, USER_PLAN, user_id)
        logger.info("user_deleted", user_id=str(user_id), username=username, **counts)

        stats = {label: count for label, count in counts.items() if label != "user"}
        return UserDeletion(user_id=user_id, username=username, email=email, counts=stats)

    def system_stats(self, principal: Principal) -> dict:
        require_super_admin(principal)

        def count(stmt) -> int:
            return int(self.session.execute(stmt).scalar_one() or 0)

        def flag_sum(column, value) -> object:
            return func.coalesce(func.sum(case((column == value, 1), else_=0)), 0)

        total_users, unverified_users = self.session.execute(
            select(func.count(User.id), flag_sum(User.is_email_verified, False))
        ).one()
        total_projects, completed_projects = self.session.execute(
            select(func.count(Project.id), flag_sum(Project.is_completed, True))
        ).one()
        total_tasks, todo_tasks, in_progress_tasks, done_tasks = self.session.execute(
            select(
                func.count(Task.id),
                flag_sum(Task.status, TaskStatus.TODO),
                flag_sum(Task.status, TaskStatus.IN_PROGRESS),
                flag_sum(Task.status, TaskStatus.DONE),
            )
        ).one()
        total_sub_tasks, completed_sub_tasks = self.session.execute(
            select(func.count(SubTask.id), flag_sum(SubTask.is_completed, True))
        ).one()
        total_notes = count(select(func.count(Note.id)))
        total_memberships = count(select(func.count(ProjectMember.id)))

        total_projects = int(total_projects)
        total_tasks = int(total_tasks)
        return {
            "total_users": int(total_users),
            "unverified_users": int(unverified_users),
            "total_projects": total_projects,
            "completed_projects": int(completed_projects),
            "total_project_memberships": total_memberships,
            "total_tasks": total_tasks,
            "todo_tasks": int(todo_tasks),
            "in_progress_tasks": int(in_progress_tasks),
            "done_tasks": int(done_tasks),
            "total_notes": total_notes,
            "total_sub_tasks": int(total_sub_tasks),
            "completed_sub_tasks": int(completed_sub_tasks),
            "pending_sub_tasks": int(total_sub_tasks) - int(completed_sub_tasks),
            "completion_rate": round(100 * int(done_tasks) / total_tasks, 2) if total_tasks else 0.0,
            "avg_members_per_project": _average(total_memberships, total_projects),
            "avg_tasks_per_project": _average(total_tasks, total_projects),
            "avg_notes_per_project": _average(total_notes, total_projects),
            "generated_at": dt.datetime.now(dt.timezone.utc),
        }
