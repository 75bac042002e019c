import os

# Settings are read once and cached; pin the test environment before any
# taskhub module is imported.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_ENABLED"] = "false"
os.environ["NOTIFICATIONS_CONSUMER_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_ALGORITHM"] = "HS256"

import httpx
import jwt
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel.ext.asyncio.session import AsyncSession

from taskhub.cache import layer as cache_module
from taskhub.clients.auth_client import AuthClient
from taskhub.database import create_db_and_tables
from taskhub.services import comment_service, task_service

USERNAMES = {1: "alice", 2: "bob", 3: "carol", 4: "dave"}


def make_token(user_id: int, username: str | None = None, secret: str = "test-secret") -> str:
    payload = {"id": user_id, "username": username or USERNAMES.get(user_id)}
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: int) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture(autouse=True)
def _fresh_cache():
    cache_module.cache_layer.clear_local()
    cache_module._locks.clear()
    yield
    cache_module.cache_layer.clear_local()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_db_and_tables(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def publish(self, routing_key, event):
        payload = event.to_wire() if hasattr(event, "to_wire") else event
        self.events.append((routing_key, payload))
        return True


@pytest.fixture
def published(monkeypatch):
    recorder = RecordingPublisher()
    monkeypatch.setattr(task_service, "event_publisher", recorder)
    monkeypatch.setattr(comment_service, "event_publisher", recorder)
    return recorder.events


def _auth_service(request: httpx.Request) -> httpx.Response:
    user_id = int(request.url.path.rsplit("/", 1)[-1])
    if user_id not in USERNAMES:
        return httpx.Response(404, json={"message": "not found"})
    return httpx.Response(200, json={"id": user_id, "username": USERNAMES[user_id]})


@pytest.fixture
def auth_client():
    return AuthClient(base_url="http://auth.test", transport=httpx.MockTransport(_auth_service))
