"""
Redis client factory with connection pooling and health checks.
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog

from crawlaudit.core.config import get_settings

logger = structlog.get_logger(__name__)

_redis_pool: aioredis.ConnectionPool | None = None


def _get_pool() -> aioredis.ConnectionPool:
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.ConnectionPool.from_url(
            str(settings.REDIS_DSN),
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=5.0,
            retry_on_timeout=True,
            health_check_interval=30,
            decode_responses=True,
        )
    return _redis_pool


async def get_redis_client() -> aioredis.Redis:
    """Get a Redis client from the connection pool."""
    return aioredis.Redis(connection_pool=_get_pool())


class CacheManager:
    """Namespaced list operations used for bounded histories."""

    def __init__(self, redis: aioredis.Redis, namespace: str = "crawlaudit"):
        self.redis = redis
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def push_bounded(self, key: str, value: str, limit: int) -> None:
        """Prepend value and keep only the newest `limit` entries."""
        pipe = self.redis.pipeline()
        full_key = self._key(key)
        pipe.lpush(full_key, value)
        pipe.ltrim(full_key, 0, limit - 1)
        await pipe.execute()

    async def get_list(self, key: str, limit: int) -> list[str]:
        return await self.redis.lrange(self._key(key), 0, limit - 1)
