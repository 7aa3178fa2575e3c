from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy.orm import Session

from collabhub import schemas
from collabhub.access import Principal
from collabhub.admin import AdminService, provision_user
from collabhub.config import CollabSettings
from collabhub.models import Project, ProjectMember, ProjectRole, Task
from collabhub.notifications import NotificationEmitter
from collabhub.service import CollabDatabase, CollabService, init_engine
from collabhub.storage import InMemoryBlobStore


class RecordingLogger:
    """Stand-in for a module's structlog logger."""

    def __init__(self):
        self.events: list[tuple[str, str, dict]] = []

    def _record(self, level: str, event: str, **kw) -> None:
        self.events.append((level, event, kw))

    def debug(self, event, **kw):
        self._record("debug", event, **kw)

    def info(self, event, **kw):
        self._record("info", event, **kw)

    def warning(self, event, **kw):
        self._record("warning", event, **kw)

    def error(self, event, **kw):
        self._record("error", event, **kw)

    def named(self, event: str) -> list[tuple[str, str, dict]]:
        return [entry for entry in self.events if entry[1] == event]


@dataclass
class Harness:
    database: CollabDatabase
    session: Session
    settings: CollabSettings
    blob_store: InMemoryBlobStore
    service: CollabService
    admin: AdminService

    def user(
        self,
        name: str,
        *,
        super_admin: bool = False,
        verified: bool = True,
        fullname: Optional[str] = None,
    ) -> Principal:
        user, _ = provision_user(
            self.session,
            email=f"{name}@example.com",
            username=name,
            fullname=fullname,
            super_admin=super_admin,
            verified=verified,
        )
        return Principal(user_id=user.id, is_super_admin=user.is_super_admin)

    def project(self, owner: Principal, name: str = "Apollo") -> Project:
        return self.service.create_project(
            schemas.ProjectCreateRequest(name=name, description="moon"), owner
        )

    def join(
        self,
        project: Project,
        member: Principal,
        role: ProjectRole = ProjectRole.MEMBER,
    ) -> ProjectMember:
        """Insert a membership directly, bypassing the add-member rules."""
        membership = ProjectMember(project_id=project.id, user_id=member.user_id, role=role)
        self.session.add(membership)
        self.session.commit()
        return membership

    def task(
        self,
        project: Project,
        actor: Principal,
        assignee: Principal,
        title: str = "Build the lander",
    ) -> Task:
        return self.service.create_task(
            project.id,
            schemas.TaskCreateRequest(title=title, assigned_to=assignee.user_id),
            actor,
        )

    def fresh_service(self) -> CollabService:
        """Service bound to its own session, as a second request would be."""
        return CollabService(
            session=self.database.session(),
            settings=self.settings,
            blob_store=self.blob_store,
            emitter=NotificationEmitter(self.database.session),
        )


@pytest.fixture()
def temp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "collabhub.db"


@pytest.fixture()
def harness(temp_db_path: Path):
    settings = CollabSettings(database_url=f"sqlite:///{temp_db_path}")
    engine = init_engine(settings)
    database = CollabDatabase(engine)
    database.create_all()
    session = database.session()
    blob_store = InMemoryBlobStore()

    service = CollabService(
        session=session,
        settings=settings,
        blob_store=blob_store,
        emitter=NotificationEmitter(database.session),
    )
    admin = AdminService(session=session, settings=settings)
    try:
        yield Harness(
            database=database,
            session=session,
            settings=settings,
            blob_store=blob_store,
            service=service,
            admin=admin,
        )
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def random_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def recorder() -> RecordingLogger:
    return RecordingLogger()
