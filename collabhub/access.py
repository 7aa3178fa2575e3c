"""Access evaluation for project-scoped resources.

The authenticated caller arrives as a :class:`Principal`. ``evaluate`` turns
it into a grant for one project: a :class:`SuperAdminGrant` (every check
passes) or a :class:`MemberGrant` carrying the membership role. Callers
branch on the grant type, never on ``is_super_admin`` again.

Nothing in this module writes to the session.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Collection, Iterable, Optional, Union

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from .errors import Forbidden
from .models import Document, ProjectMember, ProjectRole

__all__ = [
    "Principal",
    "SuperAdminGrant",
    "MemberGrant",
    "Grant",
    "TASK_MEMBER_FIELDS",
    "SUBTASK_MEMBER_FIELDS",
    "find_membership",
    "evaluate",
    "check_field_update",
    "require_super_admin",
    "can_manage_document",
]

TASK_MEMBER_FIELDS = frozenset({"status"})
SUBTASK_MEMBER_FIELDS = frozenset({"is_completed"})


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller as resolved by the authenticator."""

    user_id: uuid.UUID
    is_super_admin: bool = False


@dataclass(frozen=True, slots=True)
class SuperAdminGrant:
    user_id: uuid.UUID

    @property
    def is_admin(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class MemberGrant:
    user_id: uuid.UUID
    project_id: uuid.UUID
    role: ProjectRole

    @property
    def is_admin(self) -> bool:
        return self.role == ProjectRole.PROJECT_ADMIN


Grant = Union[SuperAdminGrant, MemberGrant]


def find_membership(
    session: Session, user_id: uuid.UUID, project_id: uuid.UUID
) -> Optional[ProjectMember]:
    return (
        session.execute(
            select(ProjectMember).where(
                and_(
                    ProjectMember.user_id == user_id,
                    ProjectMember.project_id == project_id,
                )
            )
        )
        .scalars()
        .first()
    )


def evaluate(
    session: Session,
    principal: Principal,
    project_id: uuid.UUID,
    required_role: Optional[ProjectRole] = None,
) -> Grant:
    """Decide whether ``principal`` may act on ``project_id``.

    Raises:
        Forbidden: no membership, or the membership role differs from
            ``required_role``.
    """
    if principal.is_super_admin:
        return SuperAdminGrant(user_id=principal.user_id)

    membership = find_membership(session, principal.user_id, project_id)
    if membership is None:
        raise Forbidden("no access to project")
    if required_role is not None and membership.role != required_role:
        raise Forbidden("insufficient role")
    return MemberGrant(
        user_id=principal.user_id,
        project_id=project_id,
        role=membership.role,
    )


def check_field_update(
    grant: Grant, changed_fields: Iterable[str], member_fields: Collection[str]
) -> None:
    """Members may only touch ``member_fields``; admins may touch anything."""
    if grant.is_admin:
        return
    disallowed = sorted(set(changed_fields) - set(member_fields))
    if disallowed:
        raise Forbidden("insufficient role")


def require_super_admin(principal: Principal) -> SuperAdminGrant:
    if not principal.is_super_admin:
        raise Forbidden("super admin access required")
    return SuperAdminGrant(user_id=principal.user_id)


def can_manage_document(grant: Grant, document: Document) -> bool:
    """Uploader, project admin or super admin."""
    return grant.is_admin or document.uploaded_by == grant.user_id
