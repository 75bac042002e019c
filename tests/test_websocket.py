import pytest
from conftest import make_token
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from taskhub.routers import notifications
from taskhub.websocket.manager import connection_manager


@pytest.fixture
def client():
    app = FastAPI()
    app.include_router(notifications.router)
    return TestClient(app)


def test_query_token_joins_user_room(client):
    with client.websocket_connect(f"/notifications/ws?token={make_token(5)}") as ws:
        greeting = ws.receive_json()
        assert greeting == {
            "event": "connected",
            "data": {"message": "Connected to notifications server", "userId": 5},
        }
        assert connection_manager.is_user_connected(5)


def test_authorization_header_is_accepted(client):
    headers = {"Authorization": f"Bearer {make_token(6)}"}
    with client.websocket_connect("/notifications/ws", headers=headers) as ws:
        assert ws.receive_json()["data"]["userId"] == 6


@pytest.mark.parametrize(
    "url",
    [
        "/notifications/ws",
        "/notifications/ws?token=not-a-jwt",
        f"/notifications/ws?token={make_token(5, secret='other-secret')}",
    ],
)
def test_bad_or_missing_token_is_rejected(client, url):
    with client.websocket_connect(url) as ws:
        assert ws.receive_json() == {
            "event": "error",
            "data": {"message": "Authentication failed"},
        }
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
        assert exc.value.code == 1008


def test_binary_frames_are_ignored_until_close(client):
    with client.websocket_connect(f"/notifications/ws?token={make_token(7)}") as ws:
        ws.receive_json()
        ws.send_bytes(b"\x00")
        ws.send_text("ping")
        assert connection_manager.is_user_connected(7)
    assert not connection_manager.is_user_connected(7)


class BrokenSocket:
    """Accepts, then fails on the first send."""

    def __init__(self, token):
        self.headers = {}
        self.query_params = {"token": token}

    async def accept(self):
        pass

    async def send_json(self, data):
        raise WebSocketDisconnect(code=1006)

    async def receive(self):
        raise AssertionError("socket should not be read after a failed greeting")


@pytest.mark.asyncio
async def test_failed_greeting_leaves_no_socket_in_room():
    await notifications.notifications_socket(BrokenSocket(make_token(8)))
    assert not connection_manager.is_user_connected(8)
