# app/services/infrastructure/redis_client.py
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class FastRedisClient:
    """Pooled Redis client shared by the cache and the notification queues.

    Redis is optional: a client built without a URL stays disabled, and the
    key/value helpers below log and return a fallback value instead of
    raising. Multi-command callers take the raw client from `connection()`
    and handle `ConnectionError` themselves.
    """

    def __init__(self, url: str | None = None, *, name: str = "redis", client: Any = None):
        self.url = url
        self.name = name
        self.pool = None
        self.client = client
        self._initialized = client is not None

    @property
    def enabled(self) -> bool:
        return self._initialized

    @property
    def configured(self) -> bool:
        return bool(self.url) or self.client is not None

    async def initialize(self):
        if self._initialized:
            return
        if not self.url:
            logger.info("Redis URL not provided, client disabled", client=self.name)
            return

        self.pool = ConnectionPool.from_url(
            self.url,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            retry_on_timeout=True,
            socket_connect_timeout=10,
            socket_timeout=10,
            health_check_interval=30,
            decode_responses=True,
        )
        self.client = redis.Redis(connection_pool=self.pool)

        try:
            await self.client.ping()
        except Exception as e:
            logger.error("Redis unreachable at startup", client=self.name, error=str(e))
            await self._discard()
            raise RuntimeError(f"Redis initialization failed for '{self.name}'") from e

        self._initialized = True
        logger.info(
            "Redis client ready",
            client=self.name,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )

    async def _discard(self):
        if self.client is not None:
            await self.client.aclose()
        if self.pool is not None:
            await self.pool.disconnect()
        self.client = None
        self.pool = None

    async def close(self):
        try:
            if self.pool is not None:
                await self._discard()
            logger.info("Redis client closed", client=self.name)
        except Exception as e:
            logger.error("Error closing Redis client", client=self.name, error=str(e))
        finally:
            self._initialized = False

    async def connection(self):
        """Return the raw client, connecting lazily if startup skipped it.

        Raises:
            ConnectionError: if the client is disabled or Redis is unreachable
        """
        if self._initialized:
            return self.client
        if not self.url:
            raise ConnectionError(f"Redis client '{self.name}' is disabled")

        logger.warning("Redis not initialized, connecting lazily", client=self.name)
        try:
            await self.initialize()
        except RuntimeError as e:
            raise ConnectionError(str(e)) from e
        return self.client

    async def _guarded(
        self,
        command: str,
        call: Callable[[Any], Awaitable[T]],
        fallback: T,
        key: str | None = None,
    ) -> T:
        try:
            conn = await self.connection()
            return await call(conn)
        except Exception as e:
            logger.error(
                f"Redis {command} failed",
                client=self.name,
                key=key[:30] if key else None,
                error=str(e),
            )
            return fallback

    async def ping(self) -> bool:
        return await self._guarded("PING", lambda c: _truthy(c.ping()), False)

    async def get(self, key: str) -> str | None:
        value = await self._guarded("GET", lambda c: c.get(key), None, key)
        return value or None

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        """Store `value`, expiring after `ttl_s` seconds when given."""
        if ttl_s:
            return await self._guarded("SETEX", lambda c: _truthy(c.setex(key, ttl_s, value)), False, key)
        return await self._guarded("SET", lambda c: _truthy(c.set(key, value)), False, key)

    async def delete(self, *keys: str) -> bool:
        if not keys:
            return True

        async def _delete(conn):
            await conn.delete(*keys)
            return True

        return await self._guarded("DEL", _delete, False, keys[0])

    async def keys(self, pattern: str) -> list[str] | None:
        """Keys matching a glob pattern; None when the lookup itself failed."""

        async def _keys(conn):
            return [str(k) for k in (await conn.keys(pattern) or [])]

        return await self._guarded("KEYS", _keys, None, pattern)

    async def exists(self, key: str) -> bool:
        async def _exists(conn):
            return await conn.exists(key) > 0

        return await self._guarded("EXISTS", _exists, False, key)

    async def expire(self, key: str, ttl_s: int) -> bool:
        return await self._guarded("EXPIRE", lambda c: _truthy(c.expire(key, ttl_s)), False, key)

    async def incr(self, key: str) -> int | None:
        async def _incr(conn):
            return int(await conn.incr(key))

        return await self._guarded("INCR", _incr, None, key)

    async def flush_all(self) -> bool:
        async def _flush(conn):
            await conn.flushall()
            return True

        return await self._guarded("FLUSHALL", _flush, False)


async def _truthy(result: Awaitable[Any]) -> bool:
    return bool(await result)
