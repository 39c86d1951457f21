"""
Gmail sync jobs for external cron.

gmail_sync runs one automatic sync per active connection; stale_sync_cleanup
fails runs left in_progress by a crashed process so the connection can be
claimed again.
"""

from datetime import UTC, datetime

import httpx

from mailsync.config import settings
from mailsync.db.pool import db_pool
from mailsync.dependencies import build_sync_orchestrator
from mailsync.infrastructure.observability.logging import get_logger
from mailsync.repositories.connection_repository import ConnectionRepository
from mailsync.repositories.sync_log_repository import SyncLogRepository
from mailsync.services.errors import ConnectionNotFoundError, SyncAlreadyRunningError
from mailsync.services.sync_service import SyncOrchestrator

logger = get_logger(__name__)


class GmailSyncJobMetrics:
    """Metrics tracking for one gmail_sync job run."""

    def __init__(self):
        self.reset()

    def reset(self):
        """Reset all metrics for new job run."""
        self.start_time = datetime.now(UTC)
        self.connections_seen = 0
        self.runs_completed = 0
        self.runs_failed = 0
        self.runs_skipped = 0
        self.processing_errors = 0
        self.emails_processed = 0
        self.total_duration_seconds = 0.0

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        """Convert metrics to dictionary for logging."""
        return {
            "job_run": "gmail_sync",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "connections_seen": self.connections_seen,
            "runs_completed": self.runs_completed,
            "runs_failed": self.runs_failed,
            "runs_skipped": self.runs_skipped,
            "processing_errors": self.processing_errors,
            "emails_processed": self.emails_processed,
        }


async def sync_all_connections(
    orchestrator: SyncOrchestrator, connections: ConnectionRepository
) -> dict:
    """
    Run one automatic sync for every active connection, sequentially.

    A connection already being synced is skipped; a failure on one connection
    never stops the others.
    """
    metrics = GmailSyncJobMetrics()

    active = await connections.list_all_active()
    logger.info("Starting gmail sync job", connections=len(active))

    for connection in active:
        metrics.connections_seen += 1
        try:
            result = await orchestrator.run_sync(
                connection.user_id, connection.id, sync_type="automatic"
            )
        except SyncAlreadyRunningError:
            metrics.runs_skipped += 1
            logger.info("Sync already running, skipping", connection_id=connection.id)
            continue
        except ConnectionNotFoundError:
            # Disconnected or deactivated since the listing
            metrics.runs_skipped += 1
            continue
        except Exception as e:
            metrics.processing_errors += 1
            logger.error(
                "Gmail sync job failed for connection",
                connection_id=connection.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            continue

        metrics.emails_processed += result.emails_processed
        if result.success:
            metrics.runs_completed += 1
        else:
            metrics.runs_failed += 1

    metrics.finalize()
    summary = metrics.to_dict()
    logger.info("Gmail sync job completed", **summary)
    return summary


async def cleanup_stale_runs(
    sync_log: SyncLogRepository, older_than_minutes: int | None = None
) -> int:
    """Fail in_progress runs older than the stale threshold; returns how many were failed."""
    minutes = older_than_minutes or settings.SYNC_STALE_AFTER_MINUTES
    failed = await sync_log.fail_stale_runs(minutes)
    if failed:
        logger.warning("Failed stale sync runs", count=failed, older_than_minutes=minutes)
    else:
        logger.info("No stale sync runs found", older_than_minutes=minutes)
    return failed


async def run_gmail_sync_job() -> None:
    """Worker entrypoint: owns the database pool and HTTP client for the job's lifetime."""
    await db_pool.initialize()
    try:
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as http_client:
            orchestrator = build_sync_orchestrator(http_client)
            await sync_all_connections(orchestrator, orchestrator.connections)
    finally:
        await db_pool.close()


async def run_stale_sync_cleanup_job() -> None:
    """Worker entrypoint for stale run recovery."""
    await db_pool.initialize()
    try:
        await cleanup_stale_runs(SyncLogRepository())
    finally:
        await db_pool.close()
