"""Structural invariants of the membership graph and entity stores.

The ``ensure_*`` pre-checks fail fast with a readable error. The actual
guarantees are the unique constraints declared on the models, and
:func:`guarded_flush` turns their ``IntegrityError`` into the same domain
error a pre-check would have raised.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .access import Grant, SuperAdminGrant, find_membership
from .errors import CollabError, Conflict, InvalidOperation, NotFound, ValidationFailed
from .models import FileType, Project, ProjectMember, ProjectRole, User, normalize_project_name
from .models.projects import MEMBERSHIP_CONSTRAINT, PROJECT_NAME_CONSTRAINT, SINGLE_ADMIN_INDEX

__all__ = [
    "ADMIN_CONFLICT",
    "ensure_no_project_admin",
    "ensure_can_leave",
    "ensure_project_name_available",
    "ensure_not_member",
    "ensure_assignee_eligible",
    "ensure_username_available",
    "ensure_email_available",
    "translate_integrity_error",
    "guarded_flush",
    "require_text",
    "classify_file_type",
]

ADMIN_CONFLICT = "project already has an admin"

# (markers, message). Postgres reports the constraint name, SQLite the columns;
# the membership pair must be matched before the bare project_id column.
_UNIQUE_VIOLATIONS: tuple[tuple[tuple[str, ...], str], ...] = (
    (
        (MEMBERSHIP_CONSTRAINT, "project_members.user_id, project_members.project_id"),
        "user is already a member of this project",
    ),
    ((SINGLE_ADMIN_INDEX, "project_members.project_id"), ADMIN_CONFLICT),
    ((PROJECT_NAME_CONSTRAINT, "projects.name_key"), "a project with this name already exists"),
    (("uq_users_email", "users.email"), "email is already registered"),
    (("uq_users_username", "users.username"), "username is already taken"),
)


def ensure_no_project_admin(
    session: Session, project_id: uuid.UUID, exclude_member_id: Optional[uuid.UUID] = None
) -> None:
    stmt = select(ProjectMember.id).where(
        and_(
            ProjectMember.project_id == project_id,
            ProjectMember.role == ProjectRole.PROJECT_ADMIN,
        )
    )
    if exclude_member_id is not None:
        stmt = stmt.where(ProjectMember.id != exclude_member_id)
    if session.execute(stmt).first() is not None:
        raise Conflict(ADMIN_CONFLICT)


def ensure_can_leave(session: Session, membership: ProjectMember) -> None:
    """The only project admin cannot walk away from the project."""
    if membership.role != ProjectRole.PROJECT_ADMIN:
        return
    admin_count = session.execute(
        select(func.count())
        .select_from(ProjectMember)
        .where(
            and_(
                ProjectMember.project_id == membership.project_id,
                ProjectMember.role == ProjectRole.PROJECT_ADMIN,
            )
        )
    ).scalar_one()
    if admin_count <= 1:
        raise InvalidOperation(
            "cannot leave project: you are the only project admin; "
            "assign another admin first or delete the project"
        )


def ensure_project_name_available(
    session: Session, name: str, exclude_project_id: Optional[uuid.UUID] = None
) -> None:
    stmt = select(Project.id).where(Project.name_key == normalize_project_name(name))
    if exclude_project_id is not None:
        stmt = stmt.where(Project.id != exclude_project_id)
    if session.execute(stmt).first() is not None:
        raise Conflict("a project with this name already exists")


def ensure_not_member(session: Session, user_id: uuid.UUID, project_id: uuid.UUID) -> None:
    if find_membership(session, user_id, project_id) is not None:
        raise Conflict("user is already a member of this project")


def ensure_assignee_eligible(
    session: Session, grant: Grant, project_id: uuid.UUID, assignee_id: uuid.UUID
) -> None:
    """Assignees must belong to the project; super admins may skip membership."""
    if isinstance(grant, SuperAdminGrant):
        if session.get(User, assignee_id) is None:
            raise NotFound("user not found")
        return
    if find_membership(session, assignee_id, project_id) is None:
        raise InvalidOperation("assignee not a project member")


def ensure_username_available(
    session: Session, username: str, exclude_user_id: Optional[uuid.UUID] = None
) -> None:
    stmt = select(User.id).where(User.username == username.strip().lower())
    if exclude_user_id is not None:
        stmt = stmt.where(User.id != exclude_user_id)
    if session.execute(stmt).first() is not None:
        raise Conflict("username is already taken")


def ensure_email_available(
    session: Session, email: str, exclude_user_id: Optional[uuid.UUID] = None
) -> None:
    stmt = select(User.id).where(User.email == email.strip().lower())
    if exclude_user_id is not None:
        stmt = stmt.where(User.id != exclude_user_id)
    if session.execute(stmt).first() is not None:
        raise Conflict("email is already registered")


def translate_integrity_error(exc: IntegrityError) -> CollabError:
    detail = str(exc.orig)
    for markers, message in _UNIQUE_VIOLATIONS:
        if any(marker in detail for marker in markers):
            return Conflict(message)
    return Conflict("conflicting write")


@contextmanager
def guarded_flush(session: Session) -> Iterator[None]:
    """Flush pending writes, mapping constraint violations to ``Conflict``.

    The session is rolled back on violation so the caller can keep using it.
    """
    try:
        yield
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise translate_integrity_error(exc) from None


def require_text(value: Optional[str], label: str) -> str:
    """Strip ``value`` and reject blanks."""
    if value is None or not value.strip():
        raise ValidationFailed(f"{label} is required")
    return value.strip()


def classify_file_type(mime_type: str) -> FileType:
    mime = (mime_type or "").lower()
    if mime.startswith("image/"):
        return FileType.IMAGE
    if mime == "application/pdf":
        return FileType.PDF
    if "word" in mime or "document" in mime:
        return FileType.WORD
    if "excel" in mime or "spreadsheet" in mime:
        return FileType.EXCEL
    if "powerpoint" in mime or "presentation" in mime:
        return FileType.POWERPOINT
    if mime.startswith("text/"):
        return FileType.TEXT
    if "zip" in mime or "rar" in mime or "7z" in mime:
        return FileType.ARCHIVE
    return FileType.OTHER
