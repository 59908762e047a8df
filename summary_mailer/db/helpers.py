"""
Query helpers for the job repository.

Every psycopg error surfaces as DatabaseError so callers handle a single
store failure type.
"""

from typing import Any

import psycopg

from summary_mailer.db.pool import db_pool
from summary_mailer.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """The job store could not complete an operation."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


def _wrap(e: psycopg.Error, operation: str, query: str) -> DatabaseError:
    logger.error("Job store query failed", operation=operation, query=query[:100], error=str(e))
    return DatabaseError(f"Query failed: {e}", operation=operation)


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    try:
        async with db_pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()
    except psycopg.Error as e:
        raise _wrap(e, "fetch_one", query) from e


async def fetch_all(query: str, params: tuple = ()) -> list[dict[str, Any]]:
    try:
        async with db_pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()
    except psycopg.Error as e:
        raise _wrap(e, "fetch_all", query) from e


async def execute_query(query: str, params: tuple = ()) -> int:
    """Run a write statement and return the number of affected rows."""
    try:
        async with db_pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount
    except psycopg.Error as e:
        raise _wrap(e, "execute", query) from e
