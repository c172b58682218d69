"""
In-Memory Key-Value Store

Process-local stand-in for Redis used in development mode and tests.
Honors TTLs lazily: expired keys are dropped when read, and writes sweep
the whole store at most once per sweep interval.

Author: Your Name
Version: 2.0.0
"""

import logging
import time
from typing import Callable, Optional

from ordersync.services.kv.base import BaseKeyValueStore

logger = logging.getLogger(__name__)


class InMemoryKeyValueStore(BaseKeyValueStore):
    """
    Dictionary-backed key-value store with TTL support.

    Attributes:
        clock: Monotonic clock in seconds (injectable for tests)
        sweep_interval: Minimum seconds between expired-key sweeps
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = 60.0,
    ):
        self._data: dict[str, tuple[str, Optional[float]]] = {}
        self.clock = clock
        self.sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval
        logger.info("InMemoryKeyValueStore initialized")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "memory"

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self.clock() >= expires_at

    def _sweep(self) -> None:
        now = self.clock()
        if now < self._next_sweep:
            return
        self._next_sweep = now + self.sweep_interval
        expired = [k for k, (_, exp) in self._data.items() if self._expired(exp)]
        for key in expired:
            del self._data[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired keys")

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._expired(expires_at):
            self._data.pop(key, None)
            return None
        return value

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._sweep()
        expires_at = self.clock() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires_at)

    async def put_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        if await self.get(key) is not None:
            return False
        await self.put(key, value, ttl_seconds=ttl_seconds)
        return True

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def health_check(self) -> bool:
        """In-memory store is always available."""
        return True

    def keys(self) -> list[str]:
        """List live keys (debugging and tests)."""
        return [k for k, (_, exp) in self._data.items() if not self._expired(exp)]
