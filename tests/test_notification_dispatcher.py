import pytest
from sqlalchemy.exc import OperationalError

from taskhub.models import NotificationType
from taskhub.services import notification_dispatcher
from taskhub.services.notification_dispatcher import NotificationDispatcher
from taskhub.services.notification_service import NotificationService


class FakeManager:
    def __init__(self, connected=()):
        self.connected = set(connected)
        self.sent = []

    def is_user_connected(self, user_id):
        return user_id in self.connected

    async def send_to_user(self, user_id, event, data):
        self.sent.append((user_id, event, data))
        return 1


CREATED = {
    "taskId": 11,
    "title": "Plan sprint",
    "createdBy": 1,
    "assignees": [2, 3],
}


@pytest.mark.asyncio
async def test_persists_each_recipient_and_pushes_to_connected_users(session_factory, db):
    manager = FakeManager(connected=[2])
    dispatcher = NotificationDispatcher(session_factory, manager)

    created = await dispatcher.process_event("task.created", CREATED)

    assert [n.user_id for n in created] == [2, 3]
    stored = await NotificationService.get_user_notifications(3, db)
    assert len(stored) == 1
    assert stored[0].type == NotificationType.TASK_ASSIGNED
    assert stored[0].details["title"] == "Plan sprint"
    assert stored[0].read is False

    [(user_id, event, data)] = manager.sent
    assert (user_id, event) == (2, "notification")
    assert data["id"] == created[0].id
    assert data["type"] == "task.assigned"
    assert data["taskId"] == 11


@pytest.mark.asyncio
async def test_no_recipients_stores_nothing(session_factory, db):
    dispatcher = NotificationDispatcher(session_factory, FakeManager())
    body = {**CREATED, "assignees": [1]}

    assert await dispatcher.process_event("task.created", body) == []
    assert await NotificationService.get_user_notifications(1, db) == []


@pytest.mark.asyncio
async def test_failure_for_one_user_does_not_stop_others(session_factory, monkeypatch):
    original = NotificationService.create_notification

    async def flaky(payload, db):
        if payload.user_id == 2:
            raise OperationalError("INSERT", {}, Exception("db down"))
        return await original(payload, db)

    monkeypatch.setattr(notification_dispatcher.NotificationService, "create_notification", staticmethod(flaky))
    dispatcher = NotificationDispatcher(session_factory, FakeManager(connected=[2, 3]))

    created = await dispatcher.process_event("task.created", CREATED)

    assert [n.user_id for n in created] == [3]
    assert [u for u, _, _ in dispatcher.manager.sent] == [3]
