"""
Redis cache backend for the Todo Service.
"""

from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import CacheUnavailableError, ExternalServiceError


class RedisCache:
    """Thin async Redis wrapper.

    ``get`` returns None only when the key is absent; any backend failure
    raises CacheUnavailableError so an unhealthy cache is never mistaken for
    a miss.
    """

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.logger = get_logger("todo.cache.redis")
        self.redis: Optional[redis.Redis] = None

    async def start(self):
        """Start the Redis cache."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            # Test connection
            await self.redis.ping()

            self.logger.info("Redis cache started")

        except Exception as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise ExternalServiceError("redis", "cache start failed", details={"error": str(e)})

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis cache stopped")

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise CacheUnavailableError("Cache not started")
        return self.redis

    async def get(self, key: str) -> Optional[str]:
        """Return the cached value, or None if the key is absent."""
        try:
            return await self._client().get(key)
        except RedisError as e:
            self.logger.error("Redis get failed", key=key, error=str(e))
            raise CacheUnavailableError(details={"operation": "get"}) from e

    async def set(self, key: str, value: str, ttl_seconds: int):
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        try:
            await self._client().set(key, value, ex=ttl_seconds)
        except RedisError as e:
            self.logger.error("Redis set failed", key=key, error=str(e))
            raise CacheUnavailableError(details={"operation": "set"}) from e

    async def delete(self, *keys: str) -> int:
        """Delete ``keys``; returns how many existed."""
        if not keys:
            return 0
        try:
            return await self._client().delete(*keys)
        except RedisError as e:
            self.logger.error("Redis delete failed", keys=list(keys), error=str(e))
            raise CacheUnavailableError(details={"operation": "delete"}) from e

    async def health_check(self) -> bool:
        """Check Redis health."""
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.ping())
        except Exception:
            return False
