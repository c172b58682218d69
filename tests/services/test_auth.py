import json

import httpx
import pytest

from ordersync.services.toast.auth import TOKEN_CACHE_KEY, TOKEN_LOCK_KEY, TokenManager
from ordersync.services.toast.errors import AuthError
from ordersync.services.toast.pacer import Pacer

NOW_MS = 1_714_564_800_000


def token_response(token: str = "abc", expires_in: int = 3600) -> httpx.Response:
    return httpx.Response(
        200,
        json={"token": {"accessToken": token, "tokenType": "Bearer", "expiresIn": expires_in}},
    )


def make_manager(kv, settings, handler, noop_sleep, sleep=None) -> TokenManager:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    pacer = Pacer(sleep=noop_sleep, rng=lambda: 0.0)
    return TokenManager(
        kv=kv,
        http=http,
        pacer=pacer,
        settings=settings,
        sleep=sleep or noop_sleep,
        now_ms=lambda: NOW_MS,
    )


@pytest.mark.asyncio
async def test_refreshes_once_and_serves_from_cache(kv, settings, noop_sleep):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return token_response()

    manager = make_manager(kv, settings, handler, noop_sleep)

    assert await manager.get_access_token() == "abc"
    assert await manager.get_access_token() == "abc"

    assert len(requests) == 1
    body = json.loads(requests[0].content)
    assert body == {
        "clientId": "client-id",
        "clientSecret": "client-secret",
        "userAccessType": "TOAST_MACHINE_CLIENT",
    }
    assert await kv.get(TOKEN_LOCK_KEY) is None

    stats = await manager.get_stats()
    assert stats["refreshAttempts"] == 1
    assert stats["refreshSuccess"] == 1
    assert stats["lastError"] is None


@pytest.mark.asyncio
async def test_token_close_to_expiry_is_refreshed(kv, settings, noop_sleep):
    await kv.put_json(TOKEN_CACHE_KEY, {"accessToken": "old", "expiresAt": NOW_MS + 30_000})
    manager = make_manager(kv, settings, lambda request: token_response("new"), noop_sleep)

    assert await manager.get_access_token() == "new"

    cached = await kv.get_json(TOKEN_CACHE_KEY)
    assert cached["expiresAt"] == NOW_MS + 3600 * 1000


@pytest.mark.asyncio
async def test_ttl_is_clamped(kv, settings, noop_sleep):
    manager = make_manager(kv, settings, lambda request: token_response(expires_in=5), noop_sleep)

    await manager.get_access_token()

    cached = await kv.get_json(TOKEN_CACHE_KEY)
    assert cached["expiresAt"] == NOW_MS + 60 * 1000


@pytest.mark.asyncio
async def test_auth_failure_is_not_retried(kv, settings, noop_sleep):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, text="bad credentials")

    manager = make_manager(kv, settings, handler, noop_sleep)

    with pytest.raises(AuthError) as exc_info:
        await manager.get_access_token()

    assert exc_info.value.status == 401
    assert exc_info.value.code == "UPSTREAM_AUTH_FAILED"
    assert len(calls) == 1
    assert await kv.get(TOKEN_LOCK_KEY) is None
    stats = await manager.get_stats()
    assert stats["refreshFail"] == 1
    assert stats["lastError"] == "status 401"


@pytest.mark.asyncio
async def test_non_bearer_token_is_rejected(kv, settings, noop_sleep):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"token": {"accessToken": "abc", "tokenType": "mac"}})

    manager = make_manager(kv, settings, handler, noop_sleep)

    with pytest.raises(AuthError):
        await manager.get_access_token()


@pytest.mark.asyncio
async def test_lock_loser_rechecks_cache_after_backoff(kv, settings, noop_sleep):
    calls = []
    await kv.put(TOKEN_LOCK_KEY, "held", ttl_seconds=30)

    async def other_worker_finishes(seconds: float) -> None:
        await kv.put_json(TOKEN_CACHE_KEY, {"accessToken": "theirs", "expiresAt": NOW_MS + 600_000})

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return token_response("mine")

    manager = make_manager(kv, settings, handler, noop_sleep, sleep=other_worker_finishes)

    assert await manager.get_access_token() == "theirs"
    assert calls == []


@pytest.mark.asyncio
async def test_lock_loser_refreshes_when_cache_still_empty(kv, settings, noop_sleep):
    await kv.put(TOKEN_LOCK_KEY, "held", ttl_seconds=30)
    manager = make_manager(kv, settings, lambda request: token_response("mine"), noop_sleep)

    assert await manager.get_access_token() == "mine"


@pytest.mark.asyncio
async def test_invalidate_drops_cached_token(kv, settings, noop_sleep):
    tokens = iter(["first", "second"])
    manager = make_manager(kv, settings, lambda request: token_response(next(tokens)), noop_sleep)

    assert await manager.get_access_token() == "first"
    await manager.invalidate()
    assert await manager.get_access_token() == "second"
