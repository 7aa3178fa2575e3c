"""Collaboration SQLAlchemy models organized by domain."""

from .base import (
    Base,
    FileType,
    NotificationType,
    ProjectRole,
    TaskStatus,
)
from .users import User
from .projects import Project, ProjectMember, normalize_project_name
from .work import SubTask, Task
from .content import Document, Note, Notification

__all__ = [
    "Base",
    "User",
    "Project",
    "ProjectMember",
    "Task",
    "SubTask",
    "Note",
    "Document",
    "Notification",
    "ProjectRole",
    "TaskStatus",
    "NotificationType",
    "FileType",
    "normalize_project_name",
]
