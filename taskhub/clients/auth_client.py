import asyncio
import logging

import httpx

from taskhub.cache.decorators import async_cached
from taskhub.core.config import get_settings

logger = logging.getLogger(__name__)


class AuthClient:
    """Looks up usernames in the auth service; results are cached for 5 minutes."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None, transport=None):
        settings = get_settings()
        self._client = httpx.AsyncClient(
            base_url=f"{(base_url or settings.auth_service_url).rstrip('/')}/auth",
            timeout=timeout or settings.auth_timeout_seconds,
            transport=transport,
        )

    @async_cached(lambda self, user_id, *_, **__: f"username:{user_id}", l2_ttl=300)
    async def get_username(self, user_id: int) -> str | None:
        try:
            response = await self._client.get(f"/users/{user_id}")
            response.raise_for_status()
            return response.json().get("username")
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to fetch username for user {user_id}: {e}")
            return None

    async def get_usernames(self, user_ids) -> dict[int, str | None]:
        ids = list(dict.fromkeys(uid for uid in user_ids if uid))
        names = await asyncio.gather(*(self.get_username(uid) for uid in ids))
        return dict(zip(ids, names))

    async def enrich_tasks(self, tasks: list[dict]) -> list[dict]:
        names = await self.get_usernames(t["created_by"] for t in tasks)
        return [{**t, "created_by_username": names.get(t["created_by"])} for t in tasks]

    async def enrich_comments(self, comments: list[dict]) -> list[dict]:
        names = await self.get_usernames(c["author_id"] for c in comments)
        return [{**c, "author_name": names.get(c["author_id"])} for c in comments]

    async def aclose(self):
        await self._client.aclose()


_auth_client: AuthClient | None = None


def get_auth_client() -> AuthClient:
    global _auth_client
    if _auth_client is None:
        _auth_client = AuthClient()
    return _auth_client


async def close_auth_client():
    global _auth_client
    if _auth_client is not None:
        await _auth_client.aclose()
        _auth_client = None
