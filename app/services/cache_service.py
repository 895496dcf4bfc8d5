"""
Read-path cache with pattern-based invalidation.

The cache is an accelerator only: every operation degrades to a miss or a
`False` result when Redis is disabled or erroring, so callers fall through to
computing the value normally.
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any

from app.infrastructure.observability.logging import get_logger
from app.services.infrastructure.redis_client import FastRedisClient

logger = get_logger(__name__)


class CacheKeys:
    """Key builders so every reader and invalidator agrees on key shapes."""

    @staticmethod
    def task(task_id: str) -> str:
        return f"task:{task_id}"

    @staticmethod
    def task_list(user_id: str, filters: str | None = None) -> str:
        return f"tasks:user:{user_id}:{filters}" if filters else f"tasks:user:{user_id}"

    @staticmethod
    def user_tasks(user_id: str) -> str:
        return f"tasks:user:{user_id}:*"

    @staticmethod
    def comment(comment_id: str) -> str:
        return f"comment:{comment_id}"

    @staticmethod
    def task_comments(task_id: str) -> str:
        return f"comments:task:{task_id}"

    @staticmethod
    def task_files(task_id: str) -> str:
        return f"files:task:{task_id}"

    @staticmethod
    def analytics(user_id: str) -> str:
        return f"analytics:user:{user_id}"

    @staticmethod
    def user_analytics() -> str:
        return "analytics:user:*"

    ALL_TASK_LISTS = "tasks:*"
    ALL_ANALYTICS = "analytics:*"


class CacheTTL:
    SHORT = 60
    MEDIUM = 300
    LONG = 1800
    HOUR = 3600
    DAY = 86400


class CacheService:
    def __init__(self, redis_client: FastRedisClient):
        self._redis = redis_client

    async def initialize(self) -> None:
        try:
            await self._redis.initialize()
        except RuntimeError as e:
            logger.warning("Cache backend unavailable, caching disabled", error=str(e))
            return

        if self._redis.enabled:
            logger.info("Cache service initialized")
        else:
            logger.info("Redis URL not provided, caching disabled")

    def is_active(self) -> bool:
        return self._redis.enabled

    async def ping(self) -> bool:
        if not self.is_active():
            return False
        return await self._redis.ping()

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None on miss, disabled cache or error."""
        if not self.is_active():
            return None

        raw = await self._redis.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Cache entry not decodable, treating as miss", key=key[:30], error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        if not self.is_active():
            return False

        try:
            serialized = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.error("Cache value not serializable", key=key[:30], error=str(e))
            return False
        return await self._redis.set_with_ttl(key, serialized, ttl)

    async def delete(self, key: str) -> bool:
        if not self.is_active():
            return False
        return await self._redis.delete(key)

    async def delete_pattern(self, pattern: str) -> bool:
        """
        Delete every key matching a glob pattern as one batch.

        Keys written between the scan and the delete may survive; invalidation
        is best-effort and bounded by the next invalidation or TTL expiry.
        """
        if not self.is_active():
            return False

        keys = await self._redis.keys(pattern)
        if keys is None:
            return False
        if not keys:
            return True

        deleted = await self._redis.delete(*keys)
        if deleted:
            logger.debug("Cache pattern invalidated", pattern=pattern, count=len(keys))
        return deleted

    async def exists(self, key: str) -> bool:
        if not self.is_active():
            return False
        return await self._redis.exists(key)

    async def expire(self, key: str, seconds: int) -> bool:
        if not self.is_active():
            return False
        return await self._redis.expire(key, seconds)

    async def incr(self, key: str) -> int | None:
        if not self.is_active():
            return None
        return await self._redis.incr(key)

    async def flush_all(self) -> bool:
        if not self.is_active():
            return False
        return await self._redis.flush_all()

    async def get_or_set(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl: int | None = CacheTTL.MEDIUM,
    ) -> Any:
        """Read-through helper: serve from cache, else compute and store."""
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await compute()
        if value is not None:
            await self.set(key, value, ttl)
        return value

    async def close(self) -> None:
        await self._redis.close()
