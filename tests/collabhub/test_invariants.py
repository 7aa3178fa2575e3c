import pytest
from sqlalchemy.exc import IntegrityError

from collabhub.errors import Conflict, ValidationFailed
from collabhub.invariants import (
    ADMIN_CONFLICT,
    classify_file_type,
    guarded_flush,
    require_text,
    translate_integrity_error,
)
from collabhub.models import FileType, Project, ProjectMember, ProjectRole


def _integrity_error(message: str) -> IntegrityError:
    return IntegrityError("INSERT ...", {}, Exception(message))


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        (
            "UNIQUE constraint failed: project_members.user_id, project_members.project_id",
            "user is already a member of this project",
        ),
        ("UNIQUE constraint failed: project_members.project_id", ADMIN_CONFLICT),
        (
            'duplicate key value violates unique constraint "uq_project_members_single_admin"',
            ADMIN_CONFLICT,
        ),
        (
            'duplicate key value violates unique constraint "uq_projects_name_key"',
            "a project with this name already exists",
        ),
        ("UNIQUE constraint failed: users.username", "username is already taken"),
        ("NOT NULL constraint failed: tasks.title", "conflicting write"),
    ],
)
def test_translate_integrity_error(message, expected):
    error = translate_integrity_error(_integrity_error(message))

    assert isinstance(error, Conflict)
    assert error.message == expected


def test_partial_index_rejects_second_admin(harness):
    owner = harness.user("owner")
    other = harness.user("other")
    project = harness.project(owner)

    with pytest.raises(Conflict) as excinfo:
        with guarded_flush(harness.session):
            harness.session.add(
                ProjectMember(
                    project_id=project.id,
                    user_id=other.user_id,
                    role=ProjectRole.PROJECT_ADMIN,
                )
            )

    assert excinfo.value.message == ADMIN_CONFLICT


def test_partial_index_allows_many_members(harness):
    owner = harness.user("owner")
    project = harness.project(owner)

    members = [harness.user(name) for name in ("ann", "bob", "cid")]
    with guarded_flush(harness.session):
        for member in members:
            harness.session.add(ProjectMember(project_id=project.id, user_id=member.user_id))
    harness.session.commit()

    roles = [m.role for m in harness.service.list_members(project.id, owner)]
    assert roles.count(ProjectRole.PROJECT_ADMIN) == 1
    assert roles.count(ProjectRole.MEMBER) == 3


def test_unique_membership_pair(harness):
    owner = harness.user("owner")
    member = harness.user("member")
    project = harness.project(owner)
    harness.join(project, member)

    with pytest.raises(Conflict) as excinfo:
        with guarded_flush(harness.session):
            harness.session.add(ProjectMember(project_id=project.id, user_id=member.user_id))

    assert excinfo.value.message == "user is already a member of this project"


def test_project_name_key_is_unique_in_store(harness):
    owner = harness.user("owner")
    harness.project(owner, "Alpha")

    clash = Project(description="", created_by=owner.user_id)
    clash.rename("  ALPHA ")
    with pytest.raises(Conflict) as excinfo:
        with guarded_flush(harness.session):
            harness.session.add(clash)

    assert excinfo.value.message == "a project with this name already exists"


def test_require_text_strips_and_rejects_blank():
    assert require_text("  hi ", "title") == "hi"
    with pytest.raises(ValidationFailed, match="title is required"):
        require_text("   ", "title")
    with pytest.raises(ValidationFailed):
        require_text(None, "title")


@pytest.mark.parametrize(
    ("mime", "expected"),
    [
        ("image/png", FileType.IMAGE),
        ("application/pdf", FileType.PDF),
        ("application/vnd.openxmlformats-officedocument.wordprocessingml.document", FileType.WORD),
        ("application/vnd.ms-excel", FileType.EXCEL),
        ("application/vnd.ms-powerpoint", FileType.POWERPOINT),
        ("text/markdown", FileType.TEXT),
        ("application/zip", FileType.ARCHIVE),
        ("application/x-7z-compressed", FileType.ARCHIVE),
        ("application/octet-stream", FileType.OTHER),
        ("", FileType.OTHER),
    ],
)
def test_classify_file_type(mime, expected):
    assert classify_file_type(mime) == expected
