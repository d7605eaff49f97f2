"""Optional Redis client shared by the rate limiter and the job tracker.

Redis only ever holds advisory state (rate-limit counters, job history).
Every method degrades to a falsy result when Redis is not configured or
unreachable, and callers treat that as "no information".
"""

import logging
from datetime import UTC, datetime
from typing import Any

from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from src.core.config import Constants, settings


logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis wrapper with connection pooling and failure accounting."""

    def __init__(self, url: str | None = None) -> None:
        self._url = url if url is not None else settings.redis_url
        self._client: Redis | None = None
        self._pool: ConnectionPool | None = None
        self._enabled = bool(self._url)

        self._last_successful_operation: datetime | None = None
        self._failure_count = 0
        self._total_operations = 0

        if self._enabled and self._url:
            try:
                self._pool = ConnectionPool.from_url(
                    self._url,
                    decode_responses=True,
                    max_connections=Constants.REDIS_MAX_CONNECTIONS,
                )
                self._client = Redis(connection_pool=self._pool)
                logger.info("Redis client initialized with URL: %s", self._url)
            except (RedisError, ValueError) as e:
                logger.warning("Failed to initialize Redis client: %s. Running without Redis.", e)
                self._enabled = False
                self._client = None
                self._pool = None
        else:
            logger.info("Redis URL not configured. Running without Redis.")

    @property
    def is_available(self) -> bool:
        return self._enabled and self._client is not None

    def get_health_status(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "connected": self.is_available,
            "last_successful_operation": self._last_successful_operation.isoformat()
            if self._last_successful_operation
            else None,
            "failure_count": self._failure_count,
            "total_operations": self._total_operations,
        }

    def _record(self, *, ok: bool) -> None:
        self._total_operations += 1
        if ok:
            self._last_successful_operation = datetime.now(UTC)
        else:
            self._failure_count += 1

    async def get(self, key: str) -> str | None:
        if not self._client:
            return None
        try:
            value = await self._client.get(key)
        except RedisError as e:
            self._record(ok=False)
            logger.warning("Redis GET error for key %s: %s", key, e)
            return None
        self._record(ok=True)
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set ``key`` with a TTL. Returns False when Redis is unavailable."""
        if not self._client:
            return False
        try:
            await self._client.setex(key, ttl_seconds, value)
        except RedisError as e:
            self._record(ok=False)
            logger.warning("Redis SET error for key %s: %s", key, e)
            return False
        self._record(ok=True)
        return True

    async def set_if_not_exists(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Atomically set ``key`` unless it exists. False if it existed or Redis failed."""
        if not self._client:
            return False
        try:
            result = await self._client.set(key, value, ex=ttl_seconds, nx=True)
        except RedisError as e:
            self._record(ok=False)
            logger.warning("Redis SETNX error for key %s: %s", key, e)
            return False
        self._record(ok=True)
        return bool(result)

    async def delete(self, *keys: str) -> bool:
        if not self._client or not keys:
            return False
        try:
            await self._client.delete(*keys)
        except RedisError as e:
            self._record(ok=False)
            logger.warning("Redis DELETE error: %s", e)
            return False
        self._record(ok=True)
        return True

    async def increment(self, key: str) -> int | None:
        """Atomic INCR; None when Redis is unavailable."""
        if not self._client:
            return None
        try:
            value = await self._client.incr(key)
        except RedisError as e:
            self._record(ok=False)
            logger.warning("Redis INCR error for key %s: %s", key, e)
            return None
        self._record(ok=True)
        return value

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        if not self._client:
            return False
        try:
            await self._client.expire(key, ttl_seconds)
        except RedisError as e:
            self._record(ok=False)
            logger.warning("Redis EXPIRE error for key %s: %s", key, e)
            return False
        self._record(ok=True)
        return True

    async def ping(self) -> bool:
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())  # type: ignore[misc]
        except RedisError as e:
            logger.warning("Redis PING failed: %s", e)
            return False

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            logger.info("Redis client closed")


# Global Redis client instance
redis_client = RedisClient()
