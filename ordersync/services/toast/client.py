"""
Resilient Upstream HTTP Client

Wraps every Toast GET with:
    - scoped pacing (Pacer)
    - bearer token + restaurant header injection (TokenManager)
    - exponential backoff with jitter for transport errors, 429 and 5xx
    - Retry-After awareness (waits max(exponential, Retry-After))
    - lenient JSON parsing (a malformed 2xx body yields data=None)

Non-429 4xx responses are raised immediately; a 401 also drops the cached
token so the next request re-authenticates.

Author: Your Name
Version: 2.0.0
"""

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx

from ordersync.core.config import Settings, get_settings
from ordersync.services.toast.auth import TokenManager
from ordersync.services.toast.errors import UpstreamError, extract_request_id
from ordersync.services.toast.pacer import Pacer, parse_retry_after

logger = logging.getLogger(__name__)

RESTAURANT_HEADER = "Toast-Restaurant-External-ID"


@dataclass
class UpstreamResponse:
    """
    Successful upstream response.

    Attributes:
        status: HTTP status code (2xx)
        data: Parsed JSON body, or None when empty/malformed
        text: Raw body text
        headers: Response headers
        request_id: Upstream request id, if provided
        attempts: Attempts used to obtain the response
    """
    status: int
    data: Any = None
    text: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    request_id: Optional[str] = None
    attempts: int = 1


def parse_json_body(text: str) -> Any:
    """Parse a response body, returning None instead of raising."""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


def is_retryable_status(status: int) -> bool:
    return status == 429 or 500 <= status < 600


class ResilientHttpClient:
    """
    Paced, authenticated, retrying GET client for the Toast API.

    Example:
        >>> client = ResilientHttpClient(http, pacer, tokens)
        >>> resp = await client.request_upstream(
        ...     "/orders/v2/ordersBulk",
        ...     {"startDate": start, "endDate": end, "page": 1},
        ...     scope="orders",
        ... )
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        pacer: Pacer,
        token_manager: TokenManager,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.http = http
        self.pacer = pacer
        self.token_manager = token_manager
        self.settings = settings or get_settings()
        self.sleep = sleep
        self.rng = rng

    def _scope_gap(self, scope: str) -> int:
        if scope == "orders":
            return self.settings.orders_min_gap_ms
        if scope == "menu":
            return self.settings.menu_min_gap_ms
        return self.settings.global_min_gap_ms

    def backoff_ms(self, attempt: int, base_ms: int, max_ms: int) -> float:
        """Exponential backoff for ``attempt`` (0-based), with up to base/2 of jitter."""
        delay = base_ms * (2 ** attempt) + self.rng() * (base_ms / 2)
        return min(float(max_ms), delay)

    async def _headers(self) -> dict[str, str]:
        token = await self.token_manager.get_access_token()
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            RESTAURANT_HEADER: self.settings.toast_restaurant_guid or "",
        }

    async def request_upstream(
        self,
        route: str,
        query: Optional[dict[str, Any]] = None,
        *,
        scope: str = "global",
        min_gap_ms: Optional[int] = None,
        retries: Optional[int] = None,
        backoff_base_ms: Optional[int] = None,
        max_backoff_ms: Optional[int] = None,
    ) -> UpstreamResponse:
        """
        GET ``route`` from the Toast API.

        Args:
            route: Path relative to the API base (e.g. "/menus/v2/metadata")
            query: Query parameters
            scope: Pacing scope
            min_gap_ms: Override the scope's minimum gap
            retries: Override retry count
            backoff_base_ms: Override backoff base
            max_backoff_ms: Override backoff cap

        Returns:
            UpstreamResponse: Parsed 2xx response

        Raises:
            UpstreamError: Non-retryable status or retries exhausted
            AuthError: Token could not be obtained
        """
        gap = self._scope_gap(scope) if min_gap_ms is None else min_gap_ms
        retries = self.settings.upstream_retries if retries is None else retries
        base_ms = self.settings.backoff_base_ms if backoff_base_ms is None else backoff_base_ms
        max_ms = self.settings.max_backoff_ms if max_backoff_ms is None else max_backoff_ms
        url = f"{self.settings.toast_api_base.rstrip('/')}/{route.lstrip('/')}"
        params = {k: str(v) for k, v in (query or {}).items() if v is not None}

        retry_after: Optional[str] = None
        attempt = 0
        while True:
            await self.pacer.pace(scope, gap, retry_after)
            retry_after = None
            headers = await self._headers()

            try:
                response = await self.http.get(url, params=params, headers=headers)
            except httpx.TransportError as e:
                if attempt >= retries:
                    logger.error(f"❌ Upstream {route} transport failure after {attempt + 1} attempts: {e}")
                    raise UpstreamError(
                        f"Upstream request to {route} failed: {e}",
                        route=route,
                        attempts=attempt + 1,
                    ) from e
                delay = self.backoff_ms(attempt, base_ms, max_ms)
                logger.warning(f"⚠️ Upstream {route} transport error ({e}); retry in {delay:.0f}ms")
                await self.sleep(delay / 1000)
                attempt += 1
                continue

            response_headers = dict(response.headers)
            if response.is_success:
                return UpstreamResponse(
                    status=response.status_code,
                    data=parse_json_body(response.text),
                    text=response.text,
                    headers=response_headers,
                    request_id=extract_request_id(response_headers),
                    attempts=attempt + 1,
                )

            status = response.status_code
            if status == 401:
                await self.token_manager.invalidate()

            if not is_retryable_status(status) or attempt >= retries:
                logger.error(f"❌ Upstream {route} failed with {status} after {attempt + 1} attempts")
                raise UpstreamError(
                    f"Upstream GET {route} failed: {status}",
                    status=status,
                    body_snippet=response.text,
                    response_headers=response_headers,
                    route=route,
                    attempts=attempt + 1,
                )

            delay = self.backoff_ms(attempt, base_ms, max_ms)
            header = response.headers.get("retry-after")
            retry_after_s = parse_retry_after(header)
            if retry_after_s is not None and retry_after_s * 1000 >= delay:
                # Let the pacer wait out Retry-After before the next attempt.
                retry_after = header
                logger.warning(f"⚠️ Upstream {route} returned {status}; honoring Retry-After={header}")
            else:
                logger.warning(f"⚠️ Upstream {route} returned {status}; retry in {delay:.0f}ms")
                await self.sleep(delay / 1000)
            attempt += 1
