"""Note, document and notification models."""

from __future__ import annotations

import uuid

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, String, Text, false
from sqlalchemy.orm import Mapped, mapped_column

from .base import (
    Base,
    FileType,
    NotificationType,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
    file_type_enum,
    notification_type_enum,
)

__all__ = ["Note", "Document", "Notification"]


class Note(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "notes"

    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", onupdate="NO ACTION", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)


class Document(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Project document metadata; bytes live in the blob store under ``file_ref``."""

    __tablename__ = "documents"
    __table_args__ = (Index("documents_project_created_idx", "project_id", "created_at"),)

    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", onupdate="NO ACTION", ondelete="CASCADE"),
        nullable=False,
    )
    uploaded_by: Mapped[uuid.UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    file_ref: Mapped[str] = mapped_column(String(512), nullable=False)
    file_type: Mapped[FileType] = mapped_column(file_type_enum(), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)

    @property
    def blob_kind(self) -> str:
        return "image" if self.file_type == FileType.IMAGE else "raw"


class Notification(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("notifications_user_read_idx", "user_id", "read", "created_at"),)

    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    type: Mapped[NotificationType] = mapped_column(notification_type_enum(), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str | None] = mapped_column(Text)
    read: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    related_project_id: Mapped[uuid.UUID | None] = mapped_column()
    related_task_id: Mapped[uuid.UUID | None] = mapped_column()
    related_user_id: Mapped[uuid.UUID | None] = mapped_column()
