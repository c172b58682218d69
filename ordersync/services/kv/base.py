"""
Key-Value Store Abstract Base Class

Defines the interface contract for the cache store shared by the token
manager, the order cache and the menu repository. Both the in-memory store
(development) and the Redis store (production) implement it.

The store is eventually consistent and offers no transactions: callers treat
it as an accelerator, never as a source of truth.

Author: Your Name
Version: 2.0.0
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

logger = logging.getLogger(__name__)


class BaseKeyValueStore(ABC):
    """
    Abstract base class for key-value stores.

    Values are plain strings; JSON helpers are layered on top and never
    raise on corrupt payloads.

    Example:
        >>> store = get_kv_store()
        >>> await store.put("menu_rev", "abc123", ttl_seconds=3600)
        >>> await store.get("menu_rev")
        'abc123'
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the store backend (e.g., "memory", "redis")."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when missing or expired."""
        pass

    @abstractmethod
    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Store a value, optionally expiring after ``ttl_seconds``."""
        pass

    @abstractmethod
    async def put_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """
        Store a value only when the key does not exist.

        Used for advisory locks. Returns True when the value was written.
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key (no-op when missing)."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the store is reachable."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        return None

    # ==========================================================================
    # JSON HELPERS
    # ==========================================================================

    async def get_json(self, key: str) -> Any:
        """Read and decode a JSON value; corrupt or missing entries return None."""
        raw = await self.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.debug(f"Ignoring corrupt JSON under key {key}")
            return None

    async def put_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Encode ``value`` as JSON and store it."""
        await self.put(key, json.dumps(value, separators=(",", ":")), ttl_seconds=ttl_seconds)
