import uuid

import pytest

from collabhub import notifications
from collabhub.errors import NotFound
from collabhub.models import NotificationType, Task
from collabhub.notifications import NotificationEmitter, NotificationEvent, task_assigned_event


def _assign(harness, count=1):
    owner = harness.user("owner")
    member = harness.user("member")
    project = harness.project(owner)
    harness.join(project, member)
    tasks = [harness.task(project, owner, member, title=f"Task {i}") for i in range(count)]
    return owner, member, project, tasks


def test_task_assigned_event_skips_self(harness):
    owner = harness.user("owner")
    project = harness.project(owner)
    task = Task(
        project_id=project.id,
        title="Solo",
        assigned_to=owner.user_id,
        assigned_by=owner.user_id,
    )

    assert task_assigned_event(task, project, owner.user_id) is None


def test_list_reports_unread_count(harness):
    _, member, _, _ = _assign(harness, count=3)

    page = harness.service.list_notifications(member)
    first = page.notifications[0]
    harness.service.mark_notification_read(first.id, member)
    unread = harness.service.list_notifications(member, read=False)
    limited = harness.service.list_notifications(member, limit=1)

    assert len(page.notifications) == 3
    assert page.unread_count == 3
    assert unread.unread_count == 2
    assert first.id not in {n.id for n in unread.notifications}
    assert len(limited.notifications) == 1
    assert limited.unread_count == 2


def test_mark_all_read(harness):
    _, member, _, _ = _assign(harness, count=2)

    assert harness.service.mark_all_notifications_read(member) == 2
    assert harness.service.mark_all_notifications_read(member) == 0
    assert harness.service.list_notifications(member).unread_count == 0


def test_notifications_are_private(harness):
    owner, member, _, _ = _assign(harness)
    [notification] = harness.service.list_notifications(member).notifications

    with pytest.raises(NotFound):
        harness.service.mark_notification_read(notification.id, owner)
    with pytest.raises(NotFound):
        harness.service.delete_notification(notification.id, owner)

    harness.service.delete_notification(notification.id, member)
    assert harness.service.list_notifications(member).notifications == []


def test_emitter_failure_is_logged_not_raised(monkeypatch, recorder):
    monkeypatch.setattr(notifications, "logger", recorder)

    def no_database():
        raise RuntimeError("connection refused")

    emitter = NotificationEmitter(no_database)
    event = NotificationEvent(
        recipient_id=uuid.uuid4(),
        type=NotificationType.TASK_ASSIGNED,
        title="New Task Assigned",
        message="hello",
    )

    emitter.emit_all([None, event])

    [(level, _, fields)] = recorder.named("notification_emit_failed")
    assert level == "warning"
    assert fields["type"] == "task_assigned"


def test_broken_emitter_does_not_undo_task(harness, monkeypatch, recorder):
    monkeypatch.setattr(notifications, "logger", recorder)

    def no_database():
        raise RuntimeError("connection refused")

    harness.service.emitter = NotificationEmitter(no_database)
    _, member, _, [task] = _assign(harness)

    assert harness.session.get(Task, task.id) is not None
    assert harness.service.list_notifications(member).notifications == []
    assert len(recorder.named("notification_emit_failed")) == 1
