"""Pydantic schemas for collaboration API requests/responses."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import FileType, NotificationType, ProjectRole, TaskStatus

__all__ = [
    "ProjectCreateRequest",
    "ProjectUpdateRequest",
    "ProjectResponse",
    "ProjectSummaryResponse",
    "ProjectStats",
    "ProjectDetailResponse",
    "ProjectListResponse",
    "ProjectDeleteResponse",
    "MemberAddRequest",
    "MemberUpdateRequest",
    "MemberResponse",
    "TaskCreateRequest",
    "TaskUpdateRequest",
    "TaskResponse",
    "TaskSummaryResponse",
    "TaskDetailResponse",
    "SubTaskCreateRequest",
    "SubTaskUpdateRequest",
    "SubTaskResponse",
    "NoteCreateRequest",
    "NoteUpdateRequest",
    "NoteResponse",
    "DocumentUpdateRequest",
    "DocumentResponse",
    "NotificationResponse",
    "NotificationListResponse",
    "ProfileUpdateRequest",
    "UserResponse",
    "UserSearchResult",
    "AdminUserUpdateRequest",
    "AdminUserSummary",
    "AdminMembershipEntry",
    "AdminUserDetail",
    "UserDeletionResponse",
    "SystemStatsResponse",
]


# ========================================================================
# Projects
# ========================================================================


class ProjectCreateRequest(BaseModel):
    name: str = Field(..., max_length=255)
    description: Optional[str] = None


class ProjectUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: str
    created_by: uuid.UUID
    is_completed: bool
    completed_at: Optional[dt.datetime]
    created_at: dt.datetime
    updated_at: dt.datetime


class ProjectSummaryResponse(ProjectResponse):
    """Project row as listed for the caller, with their role."""

    role: Optional[str] = None
    member_count: int = 0


class ProjectStats(BaseModel):
    total_tasks: int
    in_progress: int
    total_notes: int
    members: int


class ProjectDetailResponse(BaseModel):
    project: ProjectResponse
    role: str
    stats: ProjectStats


class ProjectListResponse(BaseModel):
    projects: list[ProjectSummaryResponse]
    total: int


class ProjectDeleteResponse(BaseModel):
    project_id: uuid.UUID
    deleted: dict[str, int]


# ========================================================================
# Membership
# ========================================================================


class MemberAddRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    role: ProjectRole = ProjectRole.MEMBER


class MemberUpdateRequest(BaseModel):
    role: ProjectRole


class MemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    project_id: uuid.UUID
    role: ProjectRole
    created_at: dt.datetime
    username: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_member(cls, member) -> "MemberResponse":
        response = cls.model_validate(member)
        if member.user is not None:
            response.username = member.user.username
            response.email = member.user.email
        return response


# ========================================================================
# Tasks
# ========================================================================


class TaskCreateRequest(BaseModel):
    title: str = Field(..., max_length=255)
    description: Optional[str] = None
    assigned_to: uuid.UUID


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    assigned_to: Optional[uuid.UUID] = None
    status: Optional[TaskStatus] = None


class SubTaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    task_id: uuid.UUID
    title: str
    assigned_to: Optional[uuid.UUID]
    created_by: uuid.UUID
    is_completed: bool
    created_at: dt.datetime


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    project_id: uuid.UUID
    title: str
    description: str
    assigned_to: uuid.UUID
    assigned_by: uuid.UUID
    status: TaskStatus
    created_at: dt.datetime
    updated_at: dt.datetime


class TaskSummaryResponse(TaskResponse):
    total_sub_tasks: int = 0
    completed_sub_tasks: int = 0


class TaskDetailResponse(BaseModel):
    task: TaskResponse
    sub_tasks: list[SubTaskResponse]
    total_sub_tasks: int
    completed_sub_tasks: int


class SubTaskCreateRequest(BaseModel):
    title: str = Field(..., max_length=255)
    assigned_to: Optional[uuid.UUID] = None


class SubTaskUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=255)
    assigned_to: Optional[uuid.UUID] = None
    is_completed: Optional[bool] = None


# ========================================================================
# Notes
# ========================================================================


class NoteCreateRequest(BaseModel):
    content: str


class NoteUpdateRequest(BaseModel):
    content: str


class NoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    project_id: uuid.UUID
    content: str
    created_by: uuid.UUID
    created_at: dt.datetime
    updated_at: dt.datetime


# ========================================================================
# Documents
# ========================================================================


class DocumentUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    project_id: uuid.UUID
    uploaded_by: uuid.UUID
    name: str
    original_name: str
    description: str
    file_url: str
    file_type: FileType
    file_size: int
    mime_type: str
    created_at: dt.datetime


# ========================================================================
# Notifications
# ========================================================================


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    link: Optional[str]
    read: bool
    related_project_id: Optional[uuid.UUID]
    related_task_id: Optional[uuid.UUID]
    related_user_id: Optional[uuid.UUID]
    created_at: dt.datetime


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


# ========================================================================
# Users
# ========================================================================


class ProfileUpdateRequest(BaseModel):
    username: Optional[str] = Field(None, min_length=1, max_length=64)
    fullname: Optional[str] = Field(None, max_length=255)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    username: str
    fullname: Optional[str]
    is_super_admin: bool
    is_email_verified: bool
    created_at: dt.datetime


class UserSearchResult(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    username: str
    fullname: Optional[str]
    is_email_verified: bool


class AdminUserUpdateRequest(BaseModel):
    username: Optional[str] = Field(None, min_length=1, max_length=64)
    email: Optional[str] = Field(None, min_length=3, max_length=320)
    is_email_verified: Optional[bool] = None


class AdminUserSummary(UserResponse):
    project_count: int = 0


class AdminMembershipEntry(BaseModel):
    project_id: uuid.UUID
    project_name: str
    role: ProjectRole
    joined_at: dt.datetime


class AdminUserDetail(BaseModel):
    user: UserResponse
    memberships: list[AdminMembershipEntry]
    total_projects: int
    roles_count: dict[str, int]


class UserDeletionResponse(BaseModel):
    user_id: uuid.UUID
    username: str
    email: str
    deletion_stats: dict[str, int]


class SystemStatsResponse(BaseModel):
    total_users: int
    unverified_users: int
    total_projects: int
    completed_projects: int
    total_project_memberships: int
    total_tasks: int
    todo_tasks: int
    in_progress_tasks: int
    done_tasks: int
    total_notes: int
    total_sub_tasks: int
    completed_sub_tasks: int
    pending_sub_tasks: int
    completion_rate: float
    avg_members_per_project: float
    avg_tasks_per_project: float
    avg_notes_per_project: float
    generated_at: dt.datetime
