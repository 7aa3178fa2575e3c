"""Canonical enum definitions for the collaboration backend."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

__all__ = [
    "EnumDefinition",
    "ProjectRole",
    "TaskStatus",
    "NotificationType",
    "FileType",
    "ENUM_DEFINITIONS",
    "ENUM_DEFINITION_BY_NAME",
    "sa_enum",
]


class CollabEnum(str, Enum):
    """Base class for enums stored as their string values."""

    @classmethod
    def values(cls) -> tuple[str, ...]:
        return tuple(item.value for item in cls)

    def __str__(self) -> str:
        return self.value


class ProjectRole(CollabEnum):
    PROJECT_ADMIN = "project_admin"
    MEMBER = "member"


class TaskStatus(CollabEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class NotificationType(CollabEnum):
    TASK_ASSIGNED = "task_assigned"
    TASK_UPDATED = "task_updated"
    PROJECT_UPDATED = "project_updated"
    NOTE_ADDED = "note_added"
    MEMBER_ADDED = "member_added"
    ROLE_CHANGED = "role_changed"


class FileType(CollabEnum):
    IMAGE = "image"
    PDF = "pdf"
    WORD = "word"
    EXCEL = "excel"
    POWERPOINT = "powerpoint"
    TEXT = "text"
    ARCHIVE = "archive"
    OTHER = "other"


@dataclass(frozen=True)
class EnumDefinition:
    """Metadata describing a stored enum type."""

    name: str
    values: tuple[str, ...]
    enum_cls: type[CollabEnum]


ENUM_DEFINITIONS: tuple[EnumDefinition, ...] = (
    EnumDefinition("project_role", ProjectRole.values(), ProjectRole),
    EnumDefinition("task_status", TaskStatus.values(), TaskStatus),
    EnumDefinition("notification_type", NotificationType.values(), NotificationType),
    EnumDefinition("file_type", FileType.values(), FileType),
)

ENUM_DEFINITION_BY_NAME: Mapping[str, EnumDefinition] = {
    definition.name: definition for definition in ENUM_DEFINITIONS
}

ENUM_DEFINITION_BY_CLASS: Mapping[type[CollabEnum], EnumDefinition] = {
    definition.enum_cls: definition for definition in ENUM_DEFINITIONS
}


def sa_enum(enum_cls: type[CollabEnum]):
    """Return a SQLAlchemy ``Enum`` that stores member values, not names.

    Values are what the partial unique index on ``project_members`` matches
    against, so they must be the persisted form on every backend.
    """

    from sqlalchemy import Enum as SqlEnum

    definition = ENUM_DEFINITION_BY_CLASS[enum_cls]
    return SqlEnum(
        enum_cls,
        name=definition.name,
        native_enum=False,
        length=32,
        values_callable=lambda cls: [member.value for member in cls],
        validate_strings=True,
    )
