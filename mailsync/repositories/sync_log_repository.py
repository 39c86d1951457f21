"""
Persistence for sync runs (gmail_sync_log).

The partial unique index on (gmail_connection_id) WHERE status = 'in_progress'
makes claim_run the single-flight primitive: a second claim for the same
connection fails inside the INSERT instead of racing a read.
"""

import psycopg
from psycopg.errors import UniqueViolation
from psycopg.types.json import Jsonb

from mailsync.db.helpers import DatabaseError, fetch_all, fetch_one, with_db_retry
from mailsync.db.pool import get_db_connection
from mailsync.infrastructure.observability.logging import get_logger
from mailsync.models.domain.sync_domain import (
    SyncAggregates,
    SyncErrorEntry,
    SyncRun,
    SyncRunStatus,
    SyncType,
)
from mailsync.services.errors import SyncAlreadyRunningError

logger = get_logger(__name__)

ERROR_MESSAGE_MAX_LENGTH = 500


class SyncLogRepository:
    """Persistence helpers for the gmail_sync_log table."""

    SELECT_COLUMNS = """
        id, gmail_connection_id, user_id, sync_type, status,
        emails_processed, companies_created, contacts_created,
        interactions_created, emails_skipped, errors, error_message,
        started_at, completed_at
    """

    @classmethod
    def _row_to_run(cls, row: dict | None) -> SyncRun | None:
        if not row:
            return None

        return SyncRun(
            id=row["id"],
            connection_id=row["gmail_connection_id"],
            user_id=str(row["user_id"]),
            sync_type=row["sync_type"],
            status=row["status"],
            emails_processed=row.get("emails_processed") or 0,
            companies_created=row.get("companies_created") or 0,
            contacts_created=row.get("contacts_created") or 0,
            interactions_created=row.get("interactions_created") or 0,
            emails_skipped=row.get("emails_skipped") or 0,
            errors=[SyncErrorEntry(**entry) for entry in (row.get("errors") or [])],
            error_message=row.get("error_message"),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
        )

    async def claim_run(self, connection_id: int, user_id: str, sync_type: SyncType) -> SyncRun:
        """
        Insert the in_progress row for a new run.

        Raises:
            SyncAlreadyRunningError: Another run already holds the connection
            DatabaseError: Any other store failure
        """
        query = f"""
            INSERT INTO gmail_sync_log (
                gmail_connection_id, user_id, sync_type, status, errors
            ) VALUES (%s, %s, %s, 'in_progress', '[]'::jsonb)
            RETURNING {self.SELECT_COLUMNS}
        """

        try:
            async with await get_db_connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, (connection_id, user_id, sync_type))
                    row = await cur.fetchone()
        except UniqueViolation as e:
            logger.info(
                "Sync claim rejected, run already in progress",
                connection_id=connection_id,
                user_id=user_id,
            )
            raise SyncAlreadyRunningError(connection_id, user_id=user_id) from e
        except psycopg.Error as e:
            logger.error("Sync claim failed", connection_id=connection_id, error=str(e))
            raise DatabaseError(
                f"Sync claim failed: {e}",
                operation="claim_run",
                recoverable=isinstance(e, psycopg.OperationalError),
            ) from e

        return self._row_to_run(row)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def finalize_run(
        self,
        run_id: int,
        status: SyncRunStatus,
        aggregates: SyncAggregates,
        error_message: str | None = None,
    ) -> SyncRun | None:
        """
        Write the terminal status and aggregates.

        Returns None when the row is no longer in_progress, which keeps the
        transition to a terminal state single-shot.
        """
        query = f"""
            UPDATE gmail_sync_log
            SET status = %s,
                emails_processed = %s,
                companies_created = %s,
                contacts_created = %s,
                interactions_created = %s,
                emails_skipped = %s,
                errors = %s,
                error_message = %s,
                completed_at = NOW()
            WHERE id = %s AND status = 'in_progress'
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                status,
                aggregates.emails_processed,
                aggregates.companies_created,
                aggregates.contacts_created,
                aggregates.interactions_created,
                aggregates.emails_skipped,
                Jsonb([entry.model_dump() for entry in aggregates.errors]),
                error_message[:ERROR_MESSAGE_MAX_LENGTH] if error_message else None,
                run_id,
            ),
        )

        if not row:
            logger.warning("Sync run already terminal, finalize skipped", sync_run_id=run_id)
        return self._row_to_run(row)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def list_recent(self, connection_id: int, user_id: str, limit: int = 10) -> list[SyncRun]:
        """Newest runs first."""
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM gmail_sync_log
            WHERE gmail_connection_id = %s AND user_id = %s
            ORDER BY started_at DESC, id DESC
            LIMIT %s
        """
        rows = await fetch_all(query, (connection_id, user_id, limit))
        return [self._row_to_run(row) for row in rows]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def latest_for_connection(self, connection_id: int) -> SyncRun | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM gmail_sync_log
            WHERE gmail_connection_id = %s
            ORDER BY started_at DESC, id DESC
            LIMIT 1
        """
        row = await fetch_one(query, (connection_id,))
        return self._row_to_run(row)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fail_stale_runs(self, older_than_minutes: int) -> int:
        """Fail in_progress runs abandoned by a crashed process."""
        query = """
            UPDATE gmail_sync_log
            SET status = 'failed',
                error_message = 'stale_run',
                completed_at = NOW()
            WHERE status = 'in_progress'
              AND started_at < NOW() - make_interval(mins => %s)
            RETURNING id
        """
        rows = await fetch_all(query, (older_than_minutes,))
        if rows:
            logger.warning(
                "Stale sync runs failed",
                count=len(rows),
                sync_run_ids=[row["id"] for row in rows],
            )
        return len(rows)
