"""Enum and constant definitions shared by models and API schemas."""

from .enums import (
    ENUM_DEFINITIONS,
    FileType,
    NotificationType,
    ProjectRole,
    TaskStatus,
    sa_enum,
)

__all__ = [
    "ENUM_DEFINITIONS",
    "FileType",
    "NotificationType",
    "ProjectRole",
    "TaskStatus",
    "sa_enum",
]
