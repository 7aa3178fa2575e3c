"""Task and sub-task models."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TaskStatus, TimestampMixin, UUIDPrimaryKeyMixin, task_status_enum

__all__ = ["Task", "SubTask"]


class Task(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("tasks_project_status_idx", "project_id", "status"),
        Index("tasks_assigned_to_idx", "assigned_to"),
        Index("tasks_assigned_by_idx", "assigned_by"),
    )

    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", onupdate="NO ACTION", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    assigned_to: Mapped[uuid.UUID] = mapped_column(nullable=False)
    assigned_by: Mapped[uuid.UUID] = mapped_column(nullable=False)
    status: Mapped[TaskStatus] = mapped_column(
        task_status_enum(), nullable=False, default=TaskStatus.TODO
    )

    sub_tasks: Mapped[list["SubTask"]] = relationship(
        back_populates="task",
        passive_deletes=True,
        order_by="SubTask.created_at",
    )


class SubTask(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "sub_tasks"

    task_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tasks.id", onupdate="NO ACTION", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column()
    created_by: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    is_completed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    task: Mapped[Task] = relationship(back_populates="sub_tasks")
