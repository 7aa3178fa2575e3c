import pytest
from sqlalchemy import select

from collabhub import schemas
from collabhub.access import Principal
from collabhub.errors import Forbidden, InvalidOperation, NotFound, ValidationFailed
from collabhub.models import Notification, NotificationType, Task, TaskStatus


def _notifications_for(harness, principal):
    session = harness.database.session()
    try:
        return list(
            session.execute(
                select(Notification).where(Notification.user_id == principal.user_id)
            ).scalars()
        )
    finally:
        session.close()


@pytest.fixture()
def crew(harness):
    owner = harness.user("owner")
    member = harness.user("member")
    project = harness.project(owner)
    harness.join(project, member)
    return owner, member, project


def test_admin_creates_task_for_member(harness, crew):
    owner, member, project = crew

    task = harness.task(project, owner, member)

    assert task.status == TaskStatus.TODO
    assert task.assigned_to == member.user_id
    assert task.assigned_by == owner.user_id
    [notification] = _notifications_for(harness, member)
    assert notification.type == NotificationType.TASK_ASSIGNED
    assert notification.related_task_id == task.id
    assert notification.related_user_id == owner.user_id
    assert "Apollo" in notification.message
    assert notification.link == f"/projects/{project.id}?tab=tasks"


def test_self_assignment_sends_no_notification(harness, crew):
    owner, _, project = crew

    harness.task(project, owner, owner)

    assert _notifications_for(harness, owner) == []


def test_member_cannot_create_task(harness, crew):
    _, member, project = crew

    with pytest.raises(Forbidden):
        harness.task(project, member, member)


def test_assignee_must_be_member_unless_super_admin(harness, crew):
    owner, _, project = crew
    outsider = harness.user("outsider")
    root = harness.user("root", super_admin=True)

    with pytest.raises(InvalidOperation, match="assignee not a project member"):
        harness.task(project, owner, outsider)

    task = harness.task(project, root, outsider)
    assert task.assigned_to == outsider.user_id


def test_super_admin_cannot_assign_unknown_user(harness, crew, random_id):
    owner, member, project = crew
    root = harness.user("root", super_admin=True)

    with pytest.raises(NotFound, match="user not found"):
        harness.service.create_task(
            project.id, schemas.TaskCreateRequest(title="Ghost", assigned_to=random_id), root
        )
    task = harness.task(project, owner, member)
    with pytest.raises(NotFound):
        harness.service.update_task(
            project.id, task.id, schemas.TaskUpdateRequest(assigned_to=random_id), root
        )
    with pytest.raises(NotFound):
        harness.service.create_sub_task(
            project.id,
            task.id,
            schemas.SubTaskCreateRequest(title="Legs", assigned_to=random_id),
            root,
        )

    assert harness.session.execute(
        select(Task.id).where(Task.assigned_to == random_id)
    ).all() == []
    assert _notifications_for(harness, Principal(user_id=random_id)) == []


def test_blank_task_title_is_rejected(harness, crew):
    owner, member, project = crew

    with pytest.raises(ValidationFailed):
        harness.task(project, owner, member, title="  ")


def test_member_may_only_move_status(harness, crew):
    owner, member, project = crew
    task = harness.task(project, owner, member)

    moved = harness.service.update_task(
        project.id, task.id, schemas.TaskUpdateRequest(status=TaskStatus.DONE), member
    )
    assert moved.status == TaskStatus.DONE

    with pytest.raises(Forbidden):
        harness.service.update_task(
            project.id, task.id, schemas.TaskUpdateRequest(title="Mine now"), member
        )


def test_unchanged_fields_do_not_count_as_changes(harness, crew):
    owner, member, project = crew
    task = harness.task(project, owner, member)

    same = harness.service.update_task(
        project.id,
        task.id,
        schemas.TaskUpdateRequest(title=task.title, status=TaskStatus.IN_PROGRESS),
        member,
    )

    assert same.status == TaskStatus.IN_PROGRESS
    assert same.title == "Build the lander"


def test_reassignment_notifies_new_assignee(harness, crew):
    owner, member, project = crew
    second = harness.user("second")
    harness.join(project, second)
    task = harness.task(project, owner, member)

    harness.service.update_task(
        project.id, task.id, schemas.TaskUpdateRequest(assigned_to=second.user_id), owner
    )

    [notification] = _notifications_for(harness, second)
    assert notification.related_task_id == task.id
    assert len(_notifications_for(harness, member)) == 1


def test_reassignment_checks_membership(harness, crew):
    owner, member, project = crew
    outsider = harness.user("outsider")
    task = harness.task(project, owner, member)

    with pytest.raises(InvalidOperation):
        harness.service.update_task(
            project.id, task.id, schemas.TaskUpdateRequest(assigned_to=outsider.user_id), owner
        )


def test_task_lookup_is_scoped_to_project(harness, crew):
    owner, member, project = crew
    other = harness.project(owner, "Gemini")
    task = harness.task(project, owner, member)

    with pytest.raises(NotFound):
        harness.service.get_task(other.id, task.id, owner)


def test_sub_task_rules(harness, crew):
    owner, member, project = crew
    task = harness.task(project, owner, member)

    with pytest.raises(Forbidden):
        harness.service.create_sub_task(
            project.id, task.id, schemas.SubTaskCreateRequest(title="Legs"), member
        )
    sub_task = harness.service.create_sub_task(
        project.id,
        task.id,
        schemas.SubTaskCreateRequest(title="Legs", assigned_to=member.user_id),
        owner,
    )

    done = harness.service.update_sub_task(
        project.id, task.id, sub_task.id, schemas.SubTaskUpdateRequest(is_completed=True), member
    )
    assert done.is_completed is True

    with pytest.raises(Forbidden):
        harness.service.update_sub_task(
            project.id, task.id, sub_task.id, schemas.SubTaskUpdateRequest(title="Arms"), member
        )
    with pytest.raises(Forbidden):
        harness.service.delete_sub_task(project.id, task.id, sub_task.id, member)

    harness.service.delete_sub_task(project.id, task.id, sub_task.id, owner)
    with pytest.raises(NotFound):
        harness.service.update_sub_task(
            project.id, task.id, sub_task.id, schemas.SubTaskUpdateRequest(is_completed=False), owner
        )


def test_task_listing_counts_sub_tasks(harness, crew):
    owner, member, project = crew
    task = harness.task(project, owner, member)
    harness.task(project, owner, member, title="Idle")
    for title in ("Legs", "Hatch"):
        harness.service.create_sub_task(
            project.id, task.id, schemas.SubTaskCreateRequest(title=title), owner
        )
    first = harness.service.list_tasks(project.id, member)
    sub_task_id = harness.service.get_task(project.id, task.id, member).sub_tasks[0].id
    harness.service.update_sub_task(
        project.id, task.id, sub_task_id, schemas.SubTaskUpdateRequest(is_completed=True), member
    )

    summaries = {s.task.id: s for s in harness.service.list_tasks(project.id, member)}
    detail = harness.service.get_task(project.id, task.id, member)

    assert len(first) == 2
    assert (summaries[task.id].total_sub_tasks, summaries[task.id].completed_sub_tasks) == (2, 1)
    idle = next(s for s in summaries.values() if s.task.id != task.id)
    assert (idle.total_sub_tasks, idle.completed_sub_tasks) == (0, 0)
    assert (detail.total_sub_tasks, detail.completed_sub_tasks) == (2, 1)


def test_notes_member_creates_admin_edits(harness, crew):
    owner, member, project = crew

    note = harness.service.create_note(
        project.id, schemas.NoteCreateRequest(content=" Fuel at 80% "), member
    )
    assert note.content == "Fuel at 80%"
    with pytest.raises(Forbidden):
        harness.service.update_note(
            project.id, note.id, schemas.NoteUpdateRequest(content="edited"), member
        )

    edited = harness.service.update_note(
        project.id, note.id, schemas.NoteUpdateRequest(content="edited"), owner
    )
    assert edited.content == "edited"
    assert [n.id for n in harness.service.list_notes(project.id, member)] == [note.id]

    harness.service.delete_note(project.id, note.id, owner)
    with pytest.raises(NotFound):
        harness.service.get_note(project.id, note.id, member)


def test_admin_can_clear_sub_task_assignee(harness, crew):
    owner, member, project = crew
    task = harness.task(project, owner, member)
    sub_task = harness.service.create_sub_task(
        project.id,
        task.id,
        schemas.SubTaskCreateRequest(title="Legs", assigned_to=member.user_id),
        owner,
    )
    unassign = schemas.SubTaskUpdateRequest(assigned_to=None)

    with pytest.raises(Forbidden):
        harness.service.update_sub_task(project.id, task.id, sub_task.id, unassign, member)

    cleared = harness.service.update_sub_task(project.id, task.id, sub_task.id, unassign, owner)
    assert cleared.assigned_to is None

    untouched = harness.service.update_sub_task(
        project.id, task.id, sub_task.id, schemas.SubTaskUpdateRequest(title=None), owner
    )
    assert untouched.title == "Legs"
