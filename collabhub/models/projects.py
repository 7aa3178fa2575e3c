"""Project and membership models."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    false,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, ProjectRole, TimestampMixin, UUIDPrimaryKeyMixin, project_role_enum

if TYPE_CHECKING:  # pragma: no cover
    from .users import User

__all__ = ["Project", "ProjectMember", "normalize_project_name"]

SINGLE_ADMIN_INDEX = "uq_project_members_single_admin"
MEMBERSHIP_CONSTRAINT = "uq_project_members_user_project"
PROJECT_NAME_CONSTRAINT = "uq_projects_name_key"

_ADMIN_PREDICATE = text(f"role = '{ProjectRole.PROJECT_ADMIN.value}'")


def normalize_project_name(name: str) -> str:
    """Key used for case-insensitive project name uniqueness."""

    return name.strip().casefold()


class Project(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Collaboration project owning members, tasks, notes and documents."""

    __tablename__ = "projects"
    __table_args__ = (
        UniqueConstraint("name_key", name=PROJECT_NAME_CONSTRAINT),
        Index("projects_created_by_idx", "created_by", "created_at"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    name_key: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_by: Mapped[uuid.UUID] = mapped_column(nullable=False)
    is_completed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    completed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))

    def rename(self, name: str) -> None:
        self.name = name.strip()
        self.name_key = normalize_project_name(name)


class ProjectMember(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Membership edge between a user and a project.

    At most one ``project_admin`` row may exist per project; the partial
    unique index enforces it even when two promotions race.
    """

    __tablename__ = "project_members"
    __table_args__ = (
        UniqueConstraint("user_id", "project_id", name=MEMBERSHIP_CONSTRAINT),
        Index(
            SINGLE_ADMIN_INDEX,
            "project_id",
            unique=True,
            sqlite_where=_ADMIN_PREDICATE,
            postgresql_where=_ADMIN_PREDICATE,
        ),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", onupdate="NO ACTION", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", onupdate="NO ACTION", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[ProjectRole] = mapped_column(
        project_role_enum(), nullable=False, default=ProjectRole.MEMBER
    )

    user: Mapped["User"] = relationship(lazy="joined")
