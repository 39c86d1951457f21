"""
Gmail sync orchestrator.

One call to run_sync is one pass of the state machine
IDLE -> CLAIMING -> RUNNING -> COMPLETED | FAILED. The claim is a single
INSERT guarded by a partial unique index; the terminal write is a single
conditional UPDATE and happens on every path, cancellation included.
"""

import asyncio
import time
from collections.abc import Callable
from contextlib import aclosing

import httpx
import structlog

from mailsync.config import settings
from mailsync.db.helpers import DatabaseError
from mailsync.infrastructure.observability.logging import get_logger, log_sync_summary
from mailsync.models.domain.connection_domain import GmailConnection
from mailsync.models.domain.sync_domain import (
    SyncAggregates,
    SyncResult,
    SyncRun,
    SyncState,
    SyncStatusSnapshot,
    SyncType,
)
from mailsync.repositories.connection_repository import ConnectionRepository
from mailsync.repositories.sync_log_repository import SyncLogRepository
from mailsync.services.entity_resolver import EntityResolver
from mailsync.services.errors import (
    AuthExpiredError,
    ConnectionNotFoundError,
    GmailAPIError,
    MailSyncError,
    ProviderUnavailableError,
    SkippedNoContactError,
    TokenRefreshError,
    UnparseableSenderError,
)
from mailsync.services.google_gmail_service import GmailClient
from mailsync.services.retry_policy import RetryPolicy
from mailsync.services.token_service import TokenService

logger = get_logger(__name__)

RECENT_RUNS_LIMIT = 10

# Errors that end the run; everything else raised while handling one message is recorded
RUN_LEVEL_ERRORS = (AuthExpiredError, ProviderUnavailableError, TokenRefreshError)


class SyncOrchestrator:
    """Drives one bounded ingestion pass per call."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        connections: ConnectionRepository,
        sync_log: SyncLogRepository,
        token_service: TokenService,
        resolver: EntityResolver,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.http_client = http_client
        self.connections = connections
        self.sync_log = sync_log
        self.token_service = token_service
        self.resolver = resolver
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.clock = clock

    def _gmail_client(self, connection: GmailConnection) -> GmailClient:
        return GmailClient(
            self.http_client, connection, self.token_service, retry_policy=self.retry_policy
        )

    @staticmethod
    def _validate_budget(days_since: int, max_emails: int) -> int:
        if days_since < 0:
            raise ValueError("days_since must be >= 0")
        if max_emails <= 0:
            raise ValueError("max_emails must be > 0")
        return min(max_emails, settings.GMAIL_SYNC_MAX_EMAILS_LIMIT)

    async def run_sync(
        self,
        user_id: str,
        connection_id: int,
        days_since: int | None = None,
        max_emails: int | None = None,
        timeout_seconds: float | None = None,
        sync_type: SyncType = "manual",
    ) -> SyncResult:
        """
        Run one sync pass for a connection.

        Args:
            user_id: Owner of the connection
            connection_id: Connection to sync
            days_since: Window in days; 0 disables the date floor
            max_emails: Message budget for this run
            timeout_seconds: Optional wall-clock budget
            sync_type: manual or automatic

        Returns:
            SyncResult: Completed or failed outcome with aggregates

        Raises:
            ConnectionNotFoundError: Unknown, foreign or inactive connection (no mutation)
            SyncAlreadyRunningError: Another run holds this connection (no mutation)
        """
        days_since = settings.GMAIL_SYNC_DEFAULT_DAYS if days_since is None else days_since
        max_emails = self._validate_budget(
            days_since,
            settings.GMAIL_SYNC_DEFAULT_MAX_EMAILS if max_emails is None else max_emails,
        )

        logger.debug(
            "Sync claim requested", state=SyncState.CLAIMING.value, connection_id=connection_id
        )
        connection = await self.connections.get_active(connection_id, user_id)
        if connection is None:
            logger.warning(
                "Sync requested for unknown or inactive connection",
                user_id=user_id,
                connection_id=connection_id,
            )
            raise ConnectionNotFoundError(connection_id, user_id=user_id)

        run = await self.sync_log.claim_run(connection_id, user_id, sync_type)

        with structlog.contextvars.bound_contextvars(
            connection_id=connection_id, sync_run_id=run.id, user_id=user_id
        ):
            state = SyncState.RUNNING
            logger.info(
                "Gmail sync started",
                state=state.value,
                sync_type=sync_type,
                days_since=days_since,
                max_emails=max_emails,
                timeout_seconds=timeout_seconds,
            )
            return await self._run_claimed(
                run, connection, days_since, max_emails, timeout_seconds
            )

    async def _run_claimed(
        self,
        run: SyncRun,
        connection: GmailConnection,
        days_since: int,
        max_emails: int,
        timeout_seconds: float | None,
    ) -> SyncResult:
        started = self.clock()
        deadline = started + timeout_seconds if timeout_seconds else None
        aggregates = SyncAggregates()
        failure_reason = None
        error_message = None
        timed_out = False

        try:
            timed_out = await self._ingest(connection, days_since, max_emails, deadline, aggregates)
        except asyncio.CancelledError:
            await self._finalize(run, aggregates, "cancelled", "Sync cancelled", started)
            raise
        except (*RUN_LEVEL_ERRORS, GmailAPIError) as e:
            failure_reason = e.error_code
            error_message = str(e)
        except Exception as e:
            logger.exception("Unexpected sync orchestrator fault", error_type=type(e).__name__)
            failure_reason = "internal_error"
            error_message = f"{type(e).__name__}: {e}"

        return await self._finalize(
            run, aggregates, failure_reason, error_message, started, timed_out=timed_out
        )

    async def _ingest(
        self,
        connection: GmailConnection,
        days_since: int,
        max_emails: int,
        deadline: float | None,
        aggregates: SyncAggregates,
    ) -> bool:
        """Process refs in provider order; returns True if the deadline stopped the run."""
        gmail = self._gmail_client(connection)
        refs = gmail.iter_message_refs(days_since=days_since, max_emails=max_emails)

        async with aclosing(refs):
            async for ref in refs:
                if deadline is not None and self.clock() >= deadline:
                    logger.info(
                        "Sync deadline reached, stopping",
                        emails_processed=aggregates.emails_processed,
                    )
                    return True

                aggregates.emails_processed += 1
                try:
                    message = await gmail.get_message(ref.id)
                    outcome = await self.resolver.resolve(
                        connection.user_id, message, connection.email_address
                    )
                except RUN_LEVEL_ERRORS:
                    raise
                except SkippedNoContactError as e:
                    aggregates.emails_skipped += 1
                    logger.debug("Message skipped", message_id=ref.id, reason=str(e))
                except (UnparseableSenderError, GmailAPIError) as e:
                    aggregates.record_error(ref.id, f"{e.error_code}: {e}")
                    logger.warning(
                        "Message failed", message_id=ref.id, error=str(e), error_code=e.error_code
                    )
                except (DatabaseError, MailSyncError) as e:
                    aggregates.record_error(ref.id, f"{type(e).__name__}: {e}")
                    logger.warning("Message failed to persist", message_id=ref.id, error=str(e))
                except Exception as e:
                    aggregates.record_error(ref.id, f"internal_error: {type(e).__name__}: {e}")
                    logger.exception("Unexpected error processing message", message_id=ref.id)
                else:
                    aggregates.record_outcome(outcome)

        return False

    async def _finalize(
        self,
        run: SyncRun,
        aggregates: SyncAggregates,
        failure_reason: str | None,
        error_message: str | None,
        started: float,
        timed_out: bool = False,
    ) -> SyncResult:
        status = "failed" if failure_reason else "completed"
        state = SyncState.FAILED if failure_reason else SyncState.COMPLETED

        stored = await self.sync_log.finalize_run(
            run.id, status, aggregates, error_message=error_message if failure_reason else None
        )
        if stored is None:
            logger.warning("Sync run was finalized elsewhere", sync_run_id=run.id)

        try:
            await self.connections.touch_last_sync(run.connection_id)
        except DatabaseError as e:
            logger.warning("Failed to stamp last_sync_at", error=str(e))

        log_sync_summary(
            connection_id=run.connection_id,
            sync_run_id=run.id,
            status=status,
            emails_processed=aggregates.emails_processed,
            error_count=len(aggregates.errors),
            duration_ms=(self.clock() - started) * 1000,
            failure_reason=failure_reason,
        )
        logger.debug("Sync state transition", state=state.value)

        return SyncResult(
            success=status == "completed",
            status=status,
            sync_run_id=run.id,
            emails_processed=aggregates.emails_processed,
            companies_created=aggregates.companies_created,
            contacts_created=aggregates.contacts_created,
            interactions_created=aggregates.interactions_created,
            emails_skipped=aggregates.emails_skipped,
            errors=list(aggregates.errors),
            failure_reason=failure_reason,
            timed_out=timed_out,
        )

    async def get_sync_status(self, user_id: str, connection_id: int) -> SyncStatusSnapshot:
        """
        Recent runs for a connection, newest first.

        Raises:
            ConnectionNotFoundError: Unknown or foreign connection
        """
        connection = await self.connections.get(connection_id, user_id)
        if connection is None:
            raise ConnectionNotFoundError(connection_id, user_id=user_id)

        runs = await self.sync_log.list_recent(connection_id, user_id, limit=RECENT_RUNS_LIMIT)
        return SyncStatusSnapshot(
            in_progress=any(run.status == "in_progress" for run in runs),
            recent_runs=runs,
        )
