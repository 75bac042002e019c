import httpx
import pytest
import pytest_asyncio
from conftest import auth_headers

from taskhub.clients.auth_client import get_auth_client
from taskhub.database import get_db
from taskhub.main import app
from taskhub.models import NotificationPayload, NotificationType
from taskhub.services.notification_service import NotificationService


@pytest_asyncio.fixture
async def client(session_factory, auth_client, published):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_auth_client] = lambda: auth_client
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _notify(session_factory, user_id, message="hello", task_id=1):
    async with session_factory() as db:
        return await NotificationService.create_notification(
            NotificationPayload(
                type=NotificationType.TASK_ASSIGNED,
                user_id=user_id,
                task_id=task_id,
                message=message,
                metadata={"taskId": task_id},
            ),
            db,
        )


@pytest.mark.asyncio
async def test_requires_bearer_token(client):
    r = await client.get("/notifications/")
    assert r.status_code == 401
    assert r.headers["www-authenticate"] == "Bearer"

    r = await client.get("/tasks/", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_notifications_are_scoped_to_caller(client, session_factory):
    first = await _notify(session_factory, 2, "first")
    await _notify(session_factory, 2, "second")
    await _notify(session_factory, 3, "not yours")

    r = await client.get("/notifications", headers=auth_headers(2))
    assert r.status_code == 200
    body = r.json()
    assert [n["message"] for n in body] == ["second", "first"]
    assert body[0]["metadata"] == {"taskId": 1}
    assert body[0]["type"] == "task.assigned"

    r = await client.patch(f"/notifications/{first.id}/read", headers=auth_headers(3))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_mark_read_and_counts(client, session_factory):
    first = await _notify(session_factory, 2, "first")
    await _notify(session_factory, 2, "second")
    headers = auth_headers(2)

    r = await client.get("/notifications/unread/count", headers=headers)
    assert r.json() == {"count": 2}

    r = await client.patch(f"/notifications/{first.id}/read", headers=headers)
    assert r.status_code == 200
    assert r.json()["read"] is True

    r = await client.get("/notifications/unread", headers=headers)
    assert [n["message"] for n in r.json()] == ["second"]

    r = await client.patch("/notifications/read-all", headers=headers)
    assert r.json() == {"success": True}
    r = await client.get("/notifications/unread/count", headers=headers)
    assert r.json() == {"count": 0}


@pytest.mark.asyncio
async def test_task_lifecycle_over_http(client, published):
    headers = auth_headers(1)

    r = await client.post(
        "/tasks/",
        json={"title": "Review PR", "priority": "HIGH", "assignees": [2]},
        headers=headers,
    )
    assert r.status_code == 201
    task = r.json()
    assert task["created_by"] == 1
    assert task["created_by_username"] == "alice"
    assert task["status"] == "TODO"

    r = await client.get(f"/tasks/{task['id']}", headers=headers)
    assert r.status_code == 200
    assert r.json()["title"] == "Review PR"

    r = await client.patch(
        f"/tasks/{task['id']}", json={"status": "REVIEW"}, headers=auth_headers(2)
    )
    assert r.status_code == 200
    assert r.json()["status"] == "REVIEW"

    r = await client.post(
        f"/tasks/{task['id']}/comments", json={"text": "done"}, headers=auth_headers(2)
    )
    assert r.status_code == 201
    assert r.json()["author_name"] == "bob"

    r = await client.get(f"/tasks/{task['id']}/history", headers=headers)
    assert [h["action"] for h in r.json()] == ["commented", "updated", "created"]

    r = await client.delete(f"/tasks/{task['id']}", headers=headers)
    assert r.status_code == 204

    assert [key for key, _ in published] == [
        "task.created",
        "task.updated",
        "task.comment.created",
        "task.deleted",
    ]


@pytest.mark.asyncio
async def test_missing_task_is_404(client):
    headers = auth_headers(1)
    assert (await client.get("/tasks/999", headers=headers)).status_code == 404
    assert (await client.patch("/tasks/999", json={"title": "x"}, headers=headers)).status_code == 404
    assert (await client.delete("/tasks/999", headers=headers)).status_code == 404
    r = await client.post("/tasks/999/comments", json={"text": "x"}, headers=headers)
    assert r.status_code == 404
    assert r.json()["detail"] == "Task with id 999 not found"


@pytest.mark.asyncio
async def test_notification_list_answers_with_and_without_slash(client, session_factory):
    await _notify(session_factory, 4, "ping")
    for path in ("/notifications", "/notifications/"):
        r = await client.get(path, headers=auth_headers(4))
        assert r.status_code == 200
        assert [n["message"] for n in r.json()] == ["ping"]
