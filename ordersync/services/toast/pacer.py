"""
Upstream Call Pacer

Scoped pacing for Toast calls. Each scope ("global", "menu", "orders")
keeps its own last-call timestamp, so a burst of order pages never delays a
menu fetch and vice versa.

Call ``pace()`` right before every upstream request.

Author: Your Name
Version: 2.0.0
"""

import asyncio
import logging
import math
import random
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

PACE_JITTER_MS = 60
RETRY_AFTER_JITTER_MS = 120
MAX_RETRY_AFTER_MS = 60_000


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Parse a Retry-After header into seconds.

    Accepts delta-seconds ("3", "1.5") or an HTTP-date. Dates in the past
    yield 0. Unparseable and non-finite values yield None.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        return max(0.0, seconds) if math.isfinite(seconds) else None
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


class Pacer:
    """
    Per-scope minimum-gap throttle with jitter.

    Last-call timestamps live in a plain dict; concurrent callers race with
    last-writer-wins semantics, which is acceptable because the gap is a
    politeness floor, not a hard quota.

    Attributes:
        sleep: Awaitable sleep function (injectable for tests)
        clock: Monotonic clock in seconds
        rng: Random source returning floats in [0, 1)
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self.sleep = sleep
        self.clock = clock
        self.rng = rng
        self._last_call: dict[str, float] = {}

    def last_call(self, scope: str) -> Optional[float]:
        return self._last_call.get(scope)

    async def pace(
        self,
        scope: str,
        min_gap_ms: int,
        retry_after: Optional[str] = None,
        max_wait_ms: float = MAX_RETRY_AFTER_MS,
    ) -> float:
        """
        Wait until ``scope`` may call upstream again.

        Args:
            scope: Pacing scope name
            min_gap_ms: Minimum gap since the previous call in this scope
            retry_after: Raw Retry-After header from a previous response
            max_wait_ms: Upper bound on a Retry-After wait

        Returns:
            float: Milliseconds slept
        """
        delay_ms = 0.0
        retry_after_s = parse_retry_after(retry_after)

        if retry_after_s is not None:
            delay_ms = retry_after_s * 1000 + self.rng() * RETRY_AFTER_JITTER_MS
            delay_ms = min(delay_ms, max_wait_ms)
            logger.debug(f"Pacer[{scope}]: honoring Retry-After, sleeping {delay_ms:.0f}ms")
        else:
            last = self._last_call.get(scope)
            if last is not None:
                elapsed_ms = (self.clock() - last) * 1000
                delay_ms = max(0.0, min_gap_ms - elapsed_ms)
            delay_ms += self.rng() * PACE_JITTER_MS

        if delay_ms > 0:
            await self.sleep(delay_ms / 1000)

        self._last_call[scope] = self.clock()
        return delay_ms
