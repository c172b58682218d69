"""
Redis Key-Value Store

Production cache store backed by ``redis.asyncio``. Shared by every API
process and the Celery worker, so token refreshes, the cursor and the order
indices are visible across the whole deployment.

Author: Your Name
Version: 2.0.0
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ordersync.core.config import get_settings
from ordersync.services.kv.base import BaseKeyValueStore

logger = logging.getLogger(__name__)


class RedisKeyValueStore(BaseKeyValueStore):
    """
    Redis implementation of the key-value store.

    Keys are namespaced with ``key_prefix`` so the store can share a Redis
    database with the Celery broker.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        key_prefix: Optional[str] = None,
        client: Optional[redis.Redis] = None,
    ):
        settings = get_settings()
        self.redis_url = redis_url or settings.redis_url
        self.key_prefix = settings.kv_key_prefix if key_prefix is None else key_prefix
        self.redis = client or redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info(f"RedisKeyValueStore initialized (prefix={self.key_prefix!r})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "redis"

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        return await self.redis.get(self._key(key))

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds:
            await self.redis.set(self._key(key), value, ex=int(ttl_seconds))
        else:
            await self.redis.set(self._key(key), value)

    async def put_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        written = await self.redis.set(self._key(key), value, ex=int(ttl_seconds), nx=True)
        return bool(written)

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._key(key))

    async def health_check(self) -> bool:
        """Ping Redis."""
        try:
            return bool(await self.redis.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        await self.redis.aclose()
