"""
Query helpers for the repository layer.

Each helper borrows a pool connection for one autocommitted statement.
psycopg failures surface as `DatabaseError`.
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import Any

import psycopg

from mailsync.db.pool import get_db_connection
from mailsync.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A sync store statement failed; `recoverable` marks connection-level failures."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def _run(
    operation: str,
    query: str,
    params: tuple,
    consume: Callable[[psycopg.AsyncCursor], Awaitable[Any]],
) -> Any:
    try:
        async with await get_db_connection() as conn:
            cur = await conn.execute(query, params)
            return await consume(cur)
    except psycopg.Error as e:
        logger.error(
            "Sync store query failed",
            operation=operation,
            query=query[:100],
            error=str(e),
            error_type=type(e).__name__,
        )
        raise DatabaseError(
            f"Query failed: {e}",
            operation=operation,
            recoverable=isinstance(e, psycopg.OperationalError),
        ) from e


async def _first_row(cur: psycopg.AsyncCursor) -> dict[str, Any] | None:
    return await cur.fetchone()


async def _all_rows(cur: psycopg.AsyncCursor) -> list[dict[str, Any]]:
    return await cur.fetchall()


async def _rowcount(cur: psycopg.AsyncCursor) -> int:
    return cur.rowcount


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    """First row as a dict, or None."""
    return await _run("fetch_one", query, params, _first_row)


async def fetch_all(query: str, params: tuple = ()) -> list[dict[str, Any]]:
    return await _run("fetch_all", query, params, _all_rows)


async def execute_query(query: str, params: tuple = ()) -> int:
    """Run a statement and return the affected row count."""
    return await _run("execute", query, params, _rowcount)


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a repository coroutine on recoverable `DatabaseError`s.

    Backoff doubles from `base_delay`. Non-recoverable errors (constraint
    violations, bad SQL) propagate on the first attempt.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    if not e.recoverable:
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            "Sync store operation exhausted retries",
                            operation=func.__name__,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise DatabaseError(
                            f"Operation failed after {max_retries} retries: {e}",
                            operation=func.__name__,
                            recoverable=False,
                        ) from e

                    delay = base_delay * (2**attempt)
                    attempt += 1
                    logger.warning(
                        "Sync store operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
