"""
Job store connection pool (psycopg_pool).

One pool per process: the API process and the standalone dispatch worker
each initialize their own. Connections run in autocommit so every
conditional job update is atomic on its own.
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

from summary_mailer.config import settings
from summary_mailer.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

POOL_CLOSE_TIMEOUT_SECONDS = 30.0


class JobStorePool:
    def __init__(self, conninfo: str | None = None):
        self.conninfo = conninfo
        self.pool: AsyncConnectionPool | None = None
        self._closed = False

    @property
    def ready(self) -> bool:
        return self.pool is not None and not self._closed

    async def initialize(self) -> None:
        """Open the pool and verify one round trip. Raises RuntimeError on failure."""
        if self.pool is not None:
            logger.warning("Job store pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        pool_config = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=self.conninfo or settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **pool_config,
        )

        try:
            await pool.open(wait=True)
            async with pool.connection() as conn:
                await conn.execute("SELECT 1")
        except Exception as e:
            logger.error("Failed to initialize job store pool", error=str(e))
            await pool.close()
            raise RuntimeError(f"Job store pool initialization failed: {e}") from e

        self.pool = pool
        logger.info(
            "Job store pool initialized",
            min_size=pool_config["min_size"],
            max_size=pool_config["max_size"],
        )

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        app_name = f"summary-mailer-{settings.environment}"
        await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(app_name)))
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute("SET statement_timeout = '30s'")

    async def close(self) -> None:
        if self.pool is None or self._closed:
            return

        self._closed = True
        try:
            await asyncio.wait_for(self.pool.close(), timeout=POOL_CLOSE_TIMEOUT_SECONDS)
            logger.info("Job store pool closed")
        except TimeoutError:
            logger.warning("Job store pool close timed out, forcing shutdown")

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a connection.

        Usage:
            async with db_pool.connection() as conn:
                await conn.execute("SELECT 1")
        """
        if not self.ready:
            raise RuntimeError("Job store pool not initialized. Call initialize() first.")

        async with self.pool.connection() as conn:
            yield conn

    async def health_check(self) -> dict[str, Any]:
        """Round-trip latency and pool statistics."""
        if not self.ready:
            return {"healthy": False, "error": "Pool not initialized", "service": "job_store"}

        stats = self.pool.get_stats()
        pool_stats = {
            "pool_size": stats.get("pool_size", 0),
            "pool_available": stats.get("pool_available", 0),
            "requests_waiting": stats.get("requests_waiting", 0),
        }

        start_time = time.time()
        try:
            async with self.connection() as conn:
                await conn.execute("SELECT 1")
        except psycopg.Error as e:
            logger.error("Job store health check failed", error=str(e))
            return {"healthy": False, "service": "job_store", "error": str(e), "pool_stats": pool_stats}

        return {
            "healthy": True,
            "service": "job_store",
            "connection_time_ms": round((time.time() - start_time) * 1000, 2),
            "pool_stats": pool_stats,
        }


db_pool = JobStorePool()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
