"""
Async PostgreSQL pool for the sync store (connections, sync runs, CRM rows).

One pool per process. The API opens it in its lifespan hook; the worker jobs
open and close it around a single run.
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

from mailsync.config import settings
from mailsync.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

POOL_CLOSE_TIMEOUT_SECONDS = 30.0


class DatabasePoolManager:
    """Lifecycle owner for the process-wide `AsyncConnectionPool`."""

    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._initialized and not self._closed

    async def initialize(self) -> None:
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")
        if not settings.SUPABASE_DB_URL:
            raise RuntimeError("SUPABASE_DB_URL not configured")

        options = settings.get_db_pool_config()
        logger.info(
            "Opening sync store pool",
            min_size=options["min_size"],
            max_size=options["max_size"],
        )

        pool = AsyncConnectionPool(
            conninfo=settings.SUPABASE_DB_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **options,
        )
        try:
            await pool.open()
            await pool.wait()
            self.pool = pool
            self._initialized = True
            await self._ping()
        except Exception as e:
            logger.error("Sync store pool failed to open", error=str(e), error_type=type(e).__name__)
            self._initialized = False
            self.pool = None
            try:
                await pool.close()
            except Exception as close_error:
                logger.warning("Error closing pool after failed open", error=str(close_error))
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info("Sync store pool ready")

    @staticmethod
    async def _configure_connection(conn: psycopg.AsyncConnection) -> None:
        # Repositories read rows as dicts and open transactions only where they need one
        conn.row_factory = dict_row
        await conn.set_autocommit(True)

        app_name = f"gmail-sync-{settings.environment}"
        await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(app_name)))
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(
                sql.Literal(f"{settings.DB_STATEMENT_TIMEOUT_SECONDS}s")
            )
        )

    async def _ping(self) -> None:
        async with self.connection() as conn:
            cur = await conn.execute("SELECT 1 AS ok")
            row = await cur.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Sync store ping returned an unexpected row")

    async def close(self) -> None:
        if not self._initialized or self._closed:
            return

        logger.info("Closing sync store pool")
        try:
            if self.pool:
                await asyncio.wait_for(self.pool.close(), timeout=POOL_CLOSE_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Sync store pool close timed out", timeout=POOL_CLOSE_TIMEOUT_SECONDS)
        finally:
            self._initialized = False
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a connection from the pool.

        Usage:
            async with db_pool.connection() as conn:
                await conn.execute("SELECT 1")
        """
        if not self.initialized or self.pool is None:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")

        async with self.pool.connection() as conn:
            yield conn

    async def health_check(self) -> dict[str, Any]:
        """Ping the store and report pool occupancy for /readyz."""
        if not self.initialized:
            return {"healthy": False, "error": "Pool not initialized", "service": "database_pool"}

        started = time.perf_counter()
        try:
            await self._ping()
        except Exception as e:
            logger.error("Sync store health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        return {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "pool_stats": {
                key: stats.get(key, 0)
                for key in ("pool_size", "pool_available", "requests_waiting")
            },
        }


db_pool = DatabasePoolManager()


async def get_db_connection():
    """Pool connection context manager; use as `async with await get_db_connection() as conn`."""
    return db_pool.connection()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
