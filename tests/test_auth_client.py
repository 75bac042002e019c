import httpx
import pytest

from taskhub.clients.auth_client import AuthClient


@pytest.mark.asyncio
async def test_usernames_are_cached_after_first_lookup():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json={"username": "zoe"})

    client = AuthClient(base_url="http://auth.test", transport=httpx.MockTransport(handler))

    assert await client.get_username(77) == "zoe"
    assert await client.get_username(77) == "zoe"
    assert calls == ["/auth/users/77"]


@pytest.mark.asyncio
async def test_lookup_failure_yields_none_and_is_retried():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(503)

    client = AuthClient(base_url="http://auth.test", transport=httpx.MockTransport(handler))

    assert await client.get_username(78) is None
    assert await client.get_username(78) is None
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_enrich_adds_names_and_tolerates_unknown_users(auth_client):
    tasks = [{"id": 1, "created_by": 1}, {"id": 2, "created_by": 99}]
    enriched = await auth_client.enrich_tasks(tasks)
    assert [t["created_by_username"] for t in enriched] == ["alice", None]

    comments = await auth_client.enrich_comments([{"id": 5, "author_id": 2}])
    assert comments[0]["author_name"] == "bob"
