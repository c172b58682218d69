"""
Toast Token Manager

Caches the machine-client bearer token in the shared key-value store and
refreshes it under an advisory lock so concurrent requests (and the Celery
worker) don't stampede the auth endpoint.

The lock is a plain key with a TTL: it bounds the thundering-herd
probability, it does not guarantee mutual exclusion. A token refreshed twice
is harmless, so losing the race only costs one extra auth call.

Auth failures raise AuthError and are NOT retried here. Retrying is the
resilient client's job; doing it in both places compounds backoff.

Author: Your Name
Version: 2.0.0
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from ordersync.core.config import Settings, get_settings
from ordersync.services.kv.base import BaseKeyValueStore
from ordersync.services.toast.errors import AuthError
from ordersync.services.toast.pacer import Pacer

logger = logging.getLogger(__name__)

TOKEN_CACHE_KEY = "toast_machine_token_v1"
TOKEN_LOCK_KEY = "toast_token_refresh_lock"
TOKEN_STATS_KEY = "toast_access_token_stats"

MIN_TOKEN_TTL_SECONDS = 60
MAX_TOKEN_TTL_SECONDS = 24 * 60 * 60
EXPIRY_SAFETY_MS = 60_000


def _now_ms() -> int:
    return int(time.time() * 1000)


async def read_token_stats(kv: BaseKeyValueStore) -> dict[str, Any]:
    stats = await kv.get_json(TOKEN_STATS_KEY)
    if not isinstance(stats, dict):
        stats = {}
    return {
        "refreshAttempts": int(stats.get("refreshAttempts", 0) or 0),
        "refreshSuccess": int(stats.get("refreshSuccess", 0) or 0),
        "refreshFail": int(stats.get("refreshFail", 0) or 0),
        "lastRefreshAt": stats.get("lastRefreshAt"),
        "lastError": stats.get("lastError"),
    }


async def describe_token(kv: BaseKeyValueStore, now_ms: Optional[int] = None) -> dict[str, Any]:
    """
    Cached token state for debugging.

    Only a short prefix of the token is exposed.
    """
    cached = await kv.get_json(TOKEN_CACHE_KEY)
    cached = cached if isinstance(cached, dict) else {}
    token = cached.get("accessToken")
    expires_at = cached.get("expiresAt")
    if not isinstance(expires_at, int) or isinstance(expires_at, bool):
        expires_at = None
    now = _now_ms() if now_ms is None else now_ms
    return {
        "tokenPreview": f"{token[:12]}..." if isinstance(token, str) and token else None,
        "tokenExpiresAt": expires_at,
        "tokenSecondsLeft": max(0, (expires_at - now) // 1000) if expires_at is not None else None,
        "stats": await read_token_stats(kv),
    }


class TokenManager:
    """
    Bearer token cache with advisory-lock refresh.

    Example:
        >>> manager = TokenManager(kv=store, http=client, pacer=pacer)
        >>> token = await manager.get_access_token()
    """

    def __init__(
        self,
        kv: BaseKeyValueStore,
        http: httpx.AsyncClient,
        pacer: Pacer,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now_ms: Callable[[], int] = _now_ms,
    ):
        self.kv = kv
        self.http = http
        self.pacer = pacer
        self.settings = settings or get_settings()
        self.sleep = sleep
        self.now_ms = now_ms

    # ==========================================================================
    # PUBLIC API
    # ==========================================================================

    async def get_access_token(self) -> str:
        """
        Return a bearer token with more than 60 seconds of validity left.

        Raises:
            AuthError: If the auth endpoint fails or returns no token
        """
        cached = await self._read_cached_token()
        if cached:
            return cached

        if await self.kv.put_if_absent(
            TOKEN_LOCK_KEY,
            str(self.now_ms()),
            ttl_seconds=self.settings.token_lock_ttl_seconds,
        ):
            try:
                return await self._refresh()
            finally:
                await self.kv.delete(TOKEN_LOCK_KEY)

        # Another caller is refreshing; give it a moment, then re-check.
        logger.debug("Token refresh lock held elsewhere, backing off")
        await self.sleep(self.settings.token_lock_backoff_ms / 1000)
        cached = await self._read_cached_token()
        if cached:
            return cached

        logger.warning("Token still missing after lock backoff, refreshing unguarded")
        return await self._refresh()

    async def invalidate(self) -> None:
        """Drop the cached token so the next call refreshes."""
        await self.kv.delete(TOKEN_CACHE_KEY)
        logger.info("Cached Toast token invalidated")

    async def get_stats(self) -> dict[str, Any]:
        """Return refresh counters recorded in the store."""
        return await read_token_stats(self.kv)

    # ==========================================================================
    # INTERNALS
    # ==========================================================================

    async def _read_cached_token(self) -> Optional[str]:
        cached = await self.kv.get_json(TOKEN_CACHE_KEY)
        if not isinstance(cached, dict):
            return None
        token = cached.get("accessToken")
        expires_at = cached.get("expiresAt")
        if not isinstance(token, str) or not token:
            return None
        if not isinstance(expires_at, (int, float)):
            return None
        if expires_at - self.now_ms() <= EXPIRY_SAFETY_MS:
            return None
        return token

    async def _refresh(self) -> str:
        await self._record_stats(attempt=True)
        await self.pacer.pace("global", self.settings.global_min_gap_ms)

        logger.info("🔑 Refreshing Toast access token")
        try:
            response = await self.http.post(
                self.settings.toast_auth_url,
                json={
                    "clientId": self.settings.toast_client_id,
                    "clientSecret": self.settings.toast_client_secret,
                    "userAccessType": "TOAST_MACHINE_CLIENT",
                },
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
        except httpx.TransportError as e:
            await self._record_stats(error=f"transport: {e}")
            raise AuthError(f"Toast auth request failed: {e}", route="auth") from e

        if not response.is_success:
            snippet = response.text[:200]
            await self._record_stats(error=f"status {response.status_code}")
            logger.warning(f"⚠️ Toast auth failed: {response.status_code}")
            raise AuthError(
                f"Toast auth failed: {response.status_code} {snippet}".strip(),
                status=response.status_code,
                body_snippet=response.text,
                response_headers=dict(response.headers),
                route="auth",
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        token_block = payload.get("token") if isinstance(payload, dict) else None
        token_block = token_block if isinstance(token_block, dict) else {}

        access_token = str(token_block.get("accessToken") or "")
        token_type = str(token_block.get("tokenType") or "").lower()
        if not access_token or token_type != "bearer":
            await self._record_stats(error="missing bearer token")
            raise AuthError(
                "Toast auth response missing bearer token",
                status=response.status_code,
                response_headers=dict(response.headers),
                route="auth",
            )

        ttl_seconds = self._clamp_ttl(token_block.get("expiresIn"))
        now = self.now_ms()
        await self.kv.put_json(
            TOKEN_CACHE_KEY,
            {
                "accessToken": access_token,
                "expiresAt": now + ttl_seconds * 1000,
                "issuedAt": now,
            },
            ttl_seconds=max(MIN_TOKEN_TTL_SECONDS, ttl_seconds - 60),
        )
        await self._record_stats(success=True)
        logger.info(f"✅ Toast access token refreshed (ttl={ttl_seconds}s)")
        return access_token

    @staticmethod
    def _clamp_ttl(expires_in: Any) -> int:
        try:
            ttl = int(float(expires_in))
        except (TypeError, ValueError):
            ttl = 1800
        return max(MIN_TOKEN_TTL_SECONDS, min(MAX_TOKEN_TTL_SECONDS, ttl))

    async def _record_stats(
        self,
        attempt: bool = False,
        success: bool = False,
        error: Optional[str] = None,
    ) -> None:
        # Best effort: read-modify-write without coordination.
        stats = await self.get_stats()
        if attempt:
            stats["refreshAttempts"] += 1
        if success:
            stats["refreshSuccess"] += 1
            stats["lastRefreshAt"] = self.now_ms()
            stats["lastError"] = None
        if error:
            stats["refreshFail"] += 1
            stats["lastError"] = error
        await self.kv.put_json(TOKEN_STATS_KEY, stats)
