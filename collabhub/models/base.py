"""Shared SQLAlchemy base, mixins and enum column helpers."""

from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..schema.enums import FileType, NotificationType, ProjectRole, TaskStatus, sa_enum

__all__ = [
    "Base",
    "UUIDPrimaryKeyMixin",
    "TimestampMixin",
    "ProjectRole",
    "TaskStatus",
    "NotificationType",
    "FileType",
    "project_role_enum",
    "task_status_enum",
    "notification_type_enum",
    "file_type_enum",
]


class Base(DeclarativeBase):
    """Declarative base class shared by all collaboration models."""


class UUIDPrimaryKeyMixin:
    """Mixin providing a UUID primary key column."""

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)


class TimestampMixin:
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# Enum helper factories -----------------------------------------------------

def project_role_enum():
    return sa_enum(ProjectRole)


def task_status_enum():
    return sa_enum(TaskStatus)


def notification_type_enum():
    return sa_enum(NotificationType)


def file_type_enum():
    return sa_enum(FileType)
