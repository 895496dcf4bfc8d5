"""
Pooled PostgreSQL access for the user/task lookups.

The pool is optional: without DATABASE_URL it stays uninitialized, the
lookups raise `DatabaseError`, and the task-reminder worker is not started.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLOSE_TIMEOUT_SECONDS = 30.0
LOOKUP_STATEMENT_TIMEOUT = "15s"


class DatabasePoolManager:
    def __init__(self, conninfo: str | None = None):
        self._conninfo = conninfo
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    @property
    def conninfo(self) -> str | None:
        return self._conninfo if self._conninfo is not None else settings.DATABASE_URL

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """
        Open the pool and wait for its minimum connections.

        Raises:
            RuntimeError: if a configured database cannot be reached, or the
                pool was already closed
        """
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        if not self.conninfo:
            logger.info("DATABASE_URL not provided, persistence lookups disabled")
            return

        pool_config = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=self.conninfo,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **pool_config,
        )
        try:
            await pool.open()
            await pool.wait(timeout=pool_config["timeout"])
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            try:
                await pool.close()
            except Exception as cleanup_error:
                logger.warning("Error discarding failed pool", error=str(cleanup_error))
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        self.pool = pool
        self._initialized = True
        logger.info(
            "Database pool initialized",
            min_size=pool_config["min_size"],
            max_size=pool_config["max_size"],
        )

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        # Lookups only; autocommit keeps idle pooled connections out of INTRANS
        await conn.set_autocommit(True)
        app_name = f"task-manager-{settings.environment}"
        await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(app_name)))
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(sql.Literal(LOOKUP_STATEMENT_TIMEOUT))
        )

    async def close(self) -> None:
        if not self._initialized or self._closed:
            return

        logger.info("Closing database connection pool")
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Database pool close timed out, forcing shutdown")
        finally:
            self._initialized = False
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a connection from the pool.

        Raises:
            RuntimeError: if the pool is not open
        """
        if not self._initialized or self.pool is None:
            raise RuntimeError("Database pool not initialized")

        async with self.pool.connection() as conn:
            yield conn

    def stats(self) -> dict[str, int]:
        if self.pool is None:
            return {}
        raw = self.pool.get_stats()
        return {
            "pool_size": raw.get("pool_size", 0),
            "pool_available": raw.get("pool_available", 0),
            "requests_waiting": raw.get("requests_waiting", 0),
        }

    async def health_check(self) -> dict[str, Any]:
        if not self._initialized:
            return {"healthy": False, "service": "database_pool", "error": "Pool not initialized"}

        started = time.time()
        try:
            async with self.connection() as conn:
                cur = await conn.execute("SELECT 1 AS ok")
                row = await cur.fetchone()
            if not row or row["ok"] != 1:
                raise RuntimeError(f"Unexpected probe result: {row}")
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        return {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": round((time.time() - started) * 1000, 2),
            **self.stats(),
        }


db_pool = DatabasePoolManager()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
