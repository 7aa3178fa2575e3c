import uuid

import pytest

from collabhub.access import (
    SUBTASK_MEMBER_FIELDS,
    TASK_MEMBER_FIELDS,
    MemberGrant,
    Principal,
    SuperAdminGrant,
    can_manage_document,
    check_field_update,
    evaluate,
    require_super_admin,
)
from collabhub.errors import Forbidden
from collabhub.models import Document, ProjectRole


def test_super_admin_always_gets_super_admin_grant(harness, random_id):
    root = harness.user("root", super_admin=True)

    grant = evaluate(harness.session, root, random_id, ProjectRole.PROJECT_ADMIN)

    assert isinstance(grant, SuperAdminGrant)
    assert grant.user_id == root.user_id
    assert grant.is_admin is True


def test_non_member_is_forbidden(harness):
    owner = harness.user("owner")
    stranger = harness.user("stranger")
    project = harness.project(owner)

    with pytest.raises(Forbidden) as excinfo:
        evaluate(harness.session, stranger, project.id)

    assert excinfo.value.message == "no access to project"


def test_member_grant_carries_role(harness):
    owner = harness.user("owner")
    member = harness.user("member")
    project = harness.project(owner)
    harness.join(project, member)

    admin_grant = evaluate(harness.session, owner, project.id)
    member_grant = evaluate(harness.session, member, project.id)

    assert isinstance(admin_grant, MemberGrant)
    assert admin_grant.role == ProjectRole.PROJECT_ADMIN
    assert admin_grant.is_admin is True
    assert member_grant.role == ProjectRole.MEMBER
    assert member_grant.is_admin is False


def test_required_role_mismatch_is_insufficient_role(harness):
    owner = harness.user("owner")
    member = harness.user("member")
    project = harness.project(owner)
    harness.join(project, member)

    with pytest.raises(Forbidden) as excinfo:
        evaluate(harness.session, member, project.id, ProjectRole.PROJECT_ADMIN)

    assert excinfo.value.message == "insufficient role"


def test_evaluate_does_not_touch_session_state(harness):
    owner = harness.user("owner")
    project = harness.project(owner)

    for _ in range(3):
        evaluate(harness.session, owner, project.id)

    assert not harness.session.new
    assert not harness.session.dirty
    assert not harness.session.deleted


def test_member_may_only_change_member_fields():
    grant = MemberGrant(uuid.uuid4(), uuid.uuid4(), ProjectRole.MEMBER)

    check_field_update(grant, {"status"}, TASK_MEMBER_FIELDS)
    check_field_update(grant, {"is_completed"}, SUBTASK_MEMBER_FIELDS)
    check_field_update(grant, set(), TASK_MEMBER_FIELDS)

    for fields in ({"title"}, {"status", "description"}, {"assigned_to"}):
        with pytest.raises(Forbidden):
            check_field_update(grant, fields, TASK_MEMBER_FIELDS)


def test_admin_grants_may_change_any_field():
    project_admin = MemberGrant(uuid.uuid4(), uuid.uuid4(), ProjectRole.PROJECT_ADMIN)
    root = SuperAdminGrant(uuid.uuid4())

    check_field_update(project_admin, {"title", "assigned_to"}, TASK_MEMBER_FIELDS)
    check_field_update(root, {"title", "is_completed"}, SUBTASK_MEMBER_FIELDS)


def test_require_super_admin():
    assert isinstance(require_super_admin(Principal(uuid.uuid4(), True)), SuperAdminGrant)
    with pytest.raises(Forbidden):
        require_super_admin(Principal(uuid.uuid4(), False))


def test_document_managers():
    uploader = uuid.uuid4()
    project_id = uuid.uuid4()
    document = Document(project_id=project_id, uploaded_by=uploader)

    assert can_manage_document(MemberGrant(uploader, project_id, ProjectRole.MEMBER), document)
    assert can_manage_document(
        MemberGrant(uuid.uuid4(), project_id, ProjectRole.PROJECT_ADMIN), document
    )
    assert can_manage_document(SuperAdminGrant(uuid.uuid4()), document)
    assert not can_manage_document(
        MemberGrant(uuid.uuid4(), project_id, ProjectRole.MEMBER), document
    )
