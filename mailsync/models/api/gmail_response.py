"""
Gmail sync API response models.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from mailsync.models.domain.sync_domain import SyncErrorEntry, SyncRun


class SyncResponse(BaseModel):
    """Outcome of a sync pass."""

    success: bool
    status: str
    sync_run_id: int | None = None
    emails_processed: int = 0
    companies_created: int = 0
    contacts_created: int = 0
    interactions_created: int = 0
    emails_skipped: int = 0
    errors: list[SyncErrorEntry] = Field(default_factory=list)
    failure_reason: str | None = None
    timed_out: bool = False


class SyncRunResponse(BaseModel):
    """One row of sync history."""

    id: int
    sync_type: str
    status: str
    emails_processed: int
    companies_created: int
    contacts_created: int
    interactions_created: int
    emails_skipped: int
    error_count: int
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_run(cls, run: SyncRun) -> "SyncRunResponse":
        return cls(
            id=run.id,
            sync_type=run.sync_type,
            status=run.status,
            emails_processed=run.emails_processed,
            companies_created=run.companies_created,
            contacts_created=run.contacts_created,
            interactions_created=run.interactions_created,
            emails_skipped=run.emails_skipped,
            error_count=len(run.errors),
            error_message=run.error_message,
            started_at=run.started_at,
            completed_at=run.completed_at,
        )


class SyncStatusResponse(BaseModel):
    in_progress: bool
    recent_runs: list[SyncRunResponse] = Field(default_factory=list)
