from typing import Any

import psycopg

from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A lookup could not be answered; `recoverable` is False when no pool is open."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    """Run a parameterized query (`%s` placeholders) and return its first row, if any."""
    try:
        async with db_pool.connection() as conn:
            cur = await conn.execute(query, params)
            return await cur.fetchone()
    except psycopg.Error as e:
        logger.error("Lookup query failed", query=query.strip()[:80], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_one") from e
    except RuntimeError as e:
        raise DatabaseError(str(e), operation="fetch_one", recoverable=False) from e
