"""FastAPI application for project collaboration.

Routes stay thin: resolve the principal, call the service, convert ORM rows
into response schemas. Domain errors are rendered by one exception handler.
"""

from __future__ import annotations

import uuid
from typing import Generator, Optional

import structlog
from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import schemas
from .access import Principal
from .admin import AdminService
from .auth import Authenticator, HeaderAuthenticator
from .config import CollabSettings
from .errors import CollabError, DependencyError
from .logging_setup import configure_logging
from .notifications import NotificationEmitter
from .service import CollabDatabase, CollabService, ProjectSummary, TaskSummary, init_engine
from .storage import BlobStore, build_blob_store

__all__ = ["create_app", "CollabSettings"]

logger = structlog.get_logger(__name__)


def _project_summary(summary: ProjectSummary) -> schemas.ProjectSummaryResponse:
    return schemas.ProjectSummaryResponse(
        **schemas.ProjectResponse.model_validate(summary.project).model_dump(),
        role=summary.role,
        member_count=summary.member_count,
    )


def _task_summary(summary: TaskSummary) -> schemas.TaskSummaryResponse:
    return schemas.TaskSummaryResponse(
        **schemas.TaskResponse.model_validate(summary.task).model_dump(),
        total_sub_tasks=summary.total_sub_tasks,
        completed_sub_tasks=summary.completed_sub_tasks,
    )


def create_app(
    settings: CollabSettings | None = None,
    blob_store: BlobStore | None = None,
    authenticator: Authenticator | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or CollabSettings.from_env()
    configure_logging(settings.log_level, json_logs=settings.log_json)
    engine = init_engine(settings)
    database = CollabDatabase(engine=engine)
    if settings.create_schema:
        database.create_all()
    blob_store = blob_store or build_blob_store(settings)
    authenticator = authenticator or HeaderAuthenticator()
    emitter = NotificationEmitter(database.session)

    app = FastAPI(
        title="CollabHub API",
        version="1.0.0",
        description="Project collaboration: projects, tasks, notes and documents",
    )
    app.state.database = database
    app.state.blob_store = blob_store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_session() -> Generator[Session, None, None]:
        session = database.session()
        try:
            yield session
        finally:
            session.close()

    def get_service(session: Session = Depends(get_session)) -> CollabService:
        return CollabService(
            session=session, settings=settings, blob_store=blob_store, emitter=emitter
        )

    def get_admin_service(session: Session = Depends(get_session)) -> AdminService:
        return AdminService(session=session, settings=settings)

    def get_principal(request: Request, session: Session = Depends(get_session)) -> Principal:
        return authenticator.resolve(request.headers, session)

    @app.exception_handler(CollabError)
    async def _handle_collab_error(request: Request, exc: CollabError):
        if isinstance(exc, DependencyError):
            logger.error(
                "dependency_failure",
                path=request.url.path,
                message=exc.message,
                cause=repr(exc.__cause__) if exc.__cause__ else None,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": exc.code},
        )

    @app.exception_handler(SQLAlchemyError)
    async def _handle_datastore_error(request: Request, exc: SQLAlchemyError):
        logger.error("datastore_failure", path=request.url.path, error=str(exc))
        error = DependencyError()
        return JSONResponse(
            status_code=error.status_code,
            content={"detail": error.message, "error": error.code},
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # ========================================================================
    # Projects
    # ========================================================================

    @app.get("/v1/projects", response_model=schemas.ProjectListResponse)
    def list_projects(
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.ProjectListResponse:
        projects = [_project_summary(s) for s in service.list_projects(principal)]
        return schemas.ProjectListResponse(projects=projects, total=len(projects))

    @app.post("/v1/projects", response_model=schemas.ProjectResponse, status_code=201)
    def create_project(
        request: schemas.ProjectCreateRequest,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.ProjectResponse:
        project = service.create_project(request, principal)
        return schemas.ProjectResponse.model_validate(project)

    @app.get("/v1/projects/{project_id}", response_model=schemas.ProjectDetailResponse)
    def get_project(
        project_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.ProjectDetailResponse:
        detail = service.get_project(project_id, principal)
        return schemas.ProjectDetailResponse(
            project=schemas.ProjectResponse.model_validate(detail.project),
            role=detail.role,
            stats=schemas.ProjectStats(**detail.stats),
        )

    @app.patch("/v1/projects/{project_id}", response_model=schemas.ProjectResponse)
    def update_project(
        project_id: uuid.UUID,
        request: schemas.ProjectUpdateRequest,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.ProjectResponse:
        project = service.update_project(project_id, request, principal)
        return schemas.ProjectResponse.model_validate(project)

    @app.patch(
        "/v1/projects/{project_id}/toggle-completion",
        response_model=schemas.ProjectResponse,
    )
    def toggle_project_completion(
        project_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.ProjectResponse:
        project = service.toggle_project_completion(project_id, principal)
        return schemas.ProjectResponse.model_validate(project)

    @app.delete("/v1/projects/{project_id}", response_model=schemas.ProjectDeleteResponse)
    def delete_project(
        project_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.ProjectDeleteResponse:
        counts = service.delete_project(project_id, principal)
        return schemas.ProjectDeleteResponse(project_id=project_id, deleted=counts)

    # ========================================================================
    # Membership
    # ========================================================================

    @app.get("/v1/projects/{project_id}/members", response_model=list[schemas.MemberResponse])
    def list_members(
        project_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> list[schemas.MemberResponse]:
        members = service.list_members(project_id, principal)
        return [schemas.MemberResponse.from_member(m) for m in members]

    @app.post(
        "/v1/projects/{project_id}/members",
        response_model=schemas.MemberResponse,
        status_code=201,
    )
    def add_member(
        project_id: uuid.UUID,
        request: schemas.MemberAddRequest,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.MemberResponse:
        member = service.add_member(project_id, request, principal)
        return schemas.MemberResponse.from_member(member)

    @app.patch(
        "/v1/projects/{project_id}/members/{member_user_id}",
        response_model=schemas.MemberResponse,
    )
    def update_member_role(
        project_id: uuid.UUID,
        member_user_id: uuid.UUID,
        request: schemas.MemberUpdateRequest,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.MemberResponse:
        member = service.update_member_role(project_id, member_user_id, request, principal)
        return schemas.MemberResponse.from_member(member)

    @app.delete("/v1/projects/{project_id}/members/{member_user_id}", status_code=204)
    def remove_member(
        project_id: uuid.UUID,
        member_user_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> None:
        service.remove_member(project_id, member_user_id, principal)

    @app.post("/v1/projects/{project_id}/leave", status_code=204)
    def leave_project(
        project_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> None:
        service.leave_project(project_id, principal)

    # ========================================================================
    # Tasks
    # ========================================================================

    @app.get(
        "/v1/projects/{project_id}/tasks",
        response_model=list[schemas.TaskSummaryResponse],
    )
    def list_tasks(
        project_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> list[schemas.TaskSummaryResponse]:
        return [_task_summary(s) for s in service.list_tasks(project_id, principal)]

    @app.post(
        "/v1/projects/{project_id}/tasks",
        response_model=schemas.TaskResponse,
        status_code=201,
    )
    def create_task(
        project_id: uuid.UUID,
        request: schemas.TaskCreateRequest,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.TaskResponse:
        task = service.create_task(project_id, request, principal)
        return schemas.TaskResponse.model_validate(task)

    @app.get(
        "/v1/projects/{project_id}/tasks/{task_id}",
        response_model=schemas.TaskDetailResponse,
    )
    def get_task(
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.TaskDetailResponse:
        detail = service.get_task(project_id, task_id, principal)
        return schemas.TaskDetailResponse(
            task=schemas.TaskResponse.model_validate(detail.task),
            sub_tasks=[schemas.SubTaskResponse.model_validate(s) for s in detail.sub_tasks],
            total_sub_tasks=detail.total_sub_tasks,
            completed_sub_tasks=detail.completed_sub_tasks,
        )

    @app.patch(
        "/v1/projects/{project_id}/tasks/{task_id}",
        response_model=schemas.TaskResponse,
    )
    def update_task(
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        request: schemas.TaskUpdateRequest,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.TaskResponse:
        task = service.update_task(project_id, task_id, request, principal)
        return schemas.TaskResponse.model_validate(task)

    @app.delete("/v1/projects/{project_id}/tasks/{task_id}")
    def delete_task(
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> dict:
        counts = service.delete_task(project_id, task_id, principal)
        return {"task_id": str(task_id), "deleted": counts}

    @app.post(
        "/v1/projects/{project_id}/tasks/{task_id}/subtasks",
        response_model=schemas.SubTaskResponse,
        status_code=201,
    )
    def create_sub_task(
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        request: schemas.SubTaskCreateRequest,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.SubTaskResponse:
        sub_task = service.create_sub_task(project_id, task_id, request, principal)
        return schemas.SubTaskResponse.model_validate(sub_task)

    @app.patch(
        "/v1/projects/{project_id}/tasks/{task_id}/subtasks/{sub_task_id}",
        response_model=schemas.SubTaskResponse,
    )
    def update_sub_task(
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        sub_task_id: uuid.UUID,
        request: schemas.SubTaskUpdateRequest,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.SubTaskResponse:
        sub_task = service.update_sub_task(project_id, task_id, sub_task_id, request, principal)
        return schemas.SubTaskResponse.model_validate(sub_task)

    @app.delete(
        "/v1/projects/{project_id}/tasks/{task_id}/subtasks/{sub_task_id}",
        status_code=204,
    )
    def delete_sub_task(
        project_id: uuid.UUID,
        task_id: uuid.UUID,
        sub_task_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> None:
        service.delete_sub_task(project_id, task_id, sub_task_id, principal)

    # ========================================================================
    # Notes
    # ========================================================================

    @app.get("/v1/projects/{project_id}/notes", response_model=list[schemas.NoteResponse])
    def list_notes(
        project_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> list[schemas.NoteResponse]:
        notes = service.list_notes(project_id, principal)
        return [schemas.NoteResponse.model_validate(n) for n in notes]

    @app.post(
        "/v1/projects/{project_id}/notes",
        response_model=schemas.NoteResponse,
        status_code=201,
    )
    def create_note(
        project_id: uuid.UUID,
        request: schemas.NoteCreateRequest,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.NoteResponse:
        note = service.create_note(project_id, request, principal)
        return schemas.NoteResponse.model_validate(note)

    @app.get(
        "/v1/projects/{project_id}/notes/{note_id}",
        response_model=schemas.NoteResponse,
    )
    def get_note(
        project_id: uuid.UUID,
        note_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.NoteResponse:
        note = service.get_note(project_id, note_id, principal)
        return schemas.NoteResponse.model_validate(note)

    @app.patch(
        "/v1/projects/{project_id}/notes/{note_id}",
        response_model=schemas.NoteResponse,
    )
    def update_note(
        project_id: uuid.UUID,
        note_id: uuid.UUID,
        request: schemas.NoteUpdateRequest,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.NoteResponse:
        note = service.update_note(project_id, note_id, request, principal)
        return schemas.NoteResponse.model_validate(note)

    @app.delete("/v1/projects/{project_id}/notes/{note_id}", status_code=204)
    def delete_note(
        project_id: uuid.UUID,
        note_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> None:
        service.delete_note(project_id, note_id, principal)

    # ========================================================================
    # Documents
    # ========================================================================

    @app.get(
        "/v1/projects/{project_id}/documents",
        response_model=list[schemas.DocumentResponse],
    )
    def list_documents(
        project_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> list[schemas.DocumentResponse]:
        documents = service.list_documents(project_id, principal)
        return [schemas.DocumentResponse.model_validate(d) for d in documents]

    @app.post(
        "/v1/projects/{project_id}/documents",
        response_model=schemas.DocumentResponse,
        status_code=201,
    )
    def upload_document(
        project_id: uuid.UUID,
        file: UploadFile = File(...),
        name: Optional[str] = Form(None),
        description: Optional[str] = Form(None),
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.DocumentResponse:
        document = service.upload_document(
            project_id,
            # one byte past the limit is enough to reject an oversized upload
            data=file.file.read(service.settings.max_upload_bytes + 1),
            filename=file.filename or "",
            mime_type=file.content_type,
            principal=principal,
            name=name,
            description=description,
        )
        return schemas.DocumentResponse.model_validate(document)

    @app.get(
        "/v1/projects/{project_id}/documents/{document_id}",
        response_model=schemas.DocumentResponse,
    )
    def get_document(
        project_id: uuid.UUID,
        document_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.DocumentResponse:
        document = service.get_document(project_id, document_id, principal)
        return schemas.DocumentResponse.model_validate(document)

    @app.patch(
        "/v1/projects/{project_id}/documents/{document_id}",
        response_model=schemas.DocumentResponse,
    )
    def update_document(
        project_id: uuid.UUID,
        document_id: uuid.UUID,
        request: schemas.DocumentUpdateRequest,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.DocumentResponse:
        document = service.update_document(project_id, document_id, request, principal)
        return schemas.DocumentResponse.model_validate(document)

    @app.delete("/v1/projects/{project_id}/documents/{document_id}", status_code=204)
    def delete_document(
        project_id: uuid.UUID,
        document_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> None:
        service.delete_document(project_id, document_id, principal)

    # ========================================================================
    # Notifications
    # ========================================================================

    @app.get("/v1/notifications", response_model=schemas.NotificationListResponse)
    def list_notifications(
        limit: Optional[int] = Query(None, ge=1, le=100),
        read: Optional[bool] = Query(None),
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.NotificationListResponse:
        page = service.list_notifications(principal, limit=limit, read=read)
        return schemas.NotificationListResponse(
            notifications=[schemas.NotificationResponse.model_validate(n) for n in page.notifications],
            unread_count=page.unread_count,
        )

    @app.patch("/v1/notifications/read-all")
    def mark_all_notifications_read(
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> dict:
        return {"updated": service.mark_all_notifications_read(principal)}

    @app.patch(
        "/v1/notifications/{notification_id}/read",
        response_model=schemas.NotificationResponse,
    )
    def mark_notification_read(
        notification_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.NotificationResponse:
        notification = service.mark_notification_read(notification_id, principal)
        return schemas.NotificationResponse.model_validate(notification)

    @app.delete("/v1/notifications/{notification_id}", status_code=204)
    def delete_notification(
        notification_id: uuid.UUID,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> None:
        service.delete_notification(notification_id, principal)

    # ========================================================================
    # Users
    # ========================================================================

    @app.patch("/v1/users/me", response_model=schemas.UserResponse)
    def update_own_profile(
        request: schemas.ProfileUpdateRequest,
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.UserResponse:
        user = service.update_own_profile(request, principal)
        return schemas.UserResponse.model_validate(user)

    @app.get("/v1/users/search", response_model=list[schemas.UserSearchResult])
    def search_users(
        q: str = Query("", max_length=255),
        project_id: Optional[uuid.UUID] = Query(None),
        service: CollabService = Depends(get_service),
        principal: Principal = Depends(get_principal),
    ) -> list[schemas.UserSearchResult]:
        users = service.search_users(q, principal, project_id=project_id)
        return [schemas.UserSearchResult.model_validate(u) for u in users]

    # ========================================================================
    # Super admin
    # ========================================================================

    @app.get("/v1/admin/users", response_model=list[schemas.AdminUserSummary])
    def admin_list_users(
        admin: AdminService = Depends(get_admin_service),
        principal: Principal = Depends(get_principal),
    ) -> list[schemas.AdminUserSummary]:
        return [
            schemas.AdminUserSummary(
                **schemas.UserResponse.model_validate(s.user).model_dump(),
                project_count=s.project_count,
            )
            for s in admin.list_users(principal)
        ]

    @app.get("/v1/admin/users/{user_id}", response_model=schemas.AdminUserDetail)
    def admin_get_user(
        user_id: uuid.UUID,
        admin: AdminService = Depends(get_admin_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.AdminUserDetail:
        detail = admin.get_user(user_id, principal)
        return schemas.AdminUserDetail(
            user=schemas.UserResponse.model_validate(detail.user),
            memberships=[
                schemas.AdminMembershipEntry(
                    project_id=project.id,
                    project_name=project.name,
                    role=member.role,
                    joined_at=member.created_at,
                )
                for member, project in detail.memberships
            ],
            total_projects=detail.total_projects,
            roles_count=detail.roles_count,
        )

    @app.patch("/v1/admin/users/{user_id}", response_model=schemas.UserResponse)
    def admin_update_user(
        user_id: uuid.UUID,
        request: schemas.AdminUserUpdateRequest,
        admin: AdminService = Depends(get_admin_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.UserResponse:
        user = admin.update_user(user_id, request, principal)
        return schemas.UserResponse.model_validate(user)

    @app.delete("/v1/admin/users/{user_id}", response_model=schemas.UserDeletionResponse)
    def admin_delete_user(
        user_id: uuid.UUID,
        admin: AdminService = Depends(get_admin_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.UserDeletionResponse:
        deletion = admin.delete_user(user_id, principal)
        return schemas.UserDeletionResponse(
            user_id=deletion.user_id,
            username=deletion.username,
            email=deletion.email,
            deletion_stats=deletion.counts,
        )

    @app.get("/v1/admin/stats", response_model=schemas.SystemStatsResponse)
    def admin_system_stats(
        admin: AdminService = Depends(get_admin_service),
        principal: Principal = Depends(get_principal),
    ) -> schemas.SystemStatsResponse:
        return schemas.SystemStatsResponse(**admin.system_stats(principal))

    return app
