"""
Key-Value Store Factory

Provides a single entry point for obtaining the cache store.
Automatically selects the in-memory store or Redis based on ENV_MODE.

Usage:
    from ordersync.services.kv import get_kv_store

    store = get_kv_store()
    await store.put("menu_rev", revision, ttl_seconds=3600)

Author: Your Name
Version: 2.0.0
"""

import logging
from functools import lru_cache
from typing import Optional

from ordersync.core.config import Settings, get_settings
from ordersync.services.kv.base import BaseKeyValueStore
from ordersync.services.kv.memory import InMemoryKeyValueStore
from ordersync.services.kv.redis_store import RedisKeyValueStore

logger = logging.getLogger(__name__)


def create_kv_store(settings: Optional[Settings] = None) -> BaseKeyValueStore:
    """
    Build a new (uncached) store instance for the configured environment.

    Celery tasks use this directly because Redis asyncio connections are
    bound to the event loop that created them.
    """
    settings = settings or get_settings()

    if settings.is_development:
        logger.info("KV Store: Using InMemoryKeyValueStore (development mode)")
        return InMemoryKeyValueStore()

    logger.info(
        f"KV Store: Using RedisKeyValueStore "
        f"({settings.env_mode.value} mode)"
    )
    return RedisKeyValueStore(redis_url=settings.redis_url, key_prefix=settings.kv_key_prefix)


@lru_cache()
def get_kv_store() -> BaseKeyValueStore:
    """
    Get the configured key-value store instance.

    Returns:
        BaseKeyValueStore: Shared store for the API process
    """
    return create_kv_store()


def reset_kv_store() -> None:
    """
    Clear the cached store instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_kv_store.cache_clear()
    logger.debug("KV store cache cleared")


__all__ = [
    "get_kv_store",
    "create_kv_store",
    "reset_kv_store",
    "BaseKeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
]
