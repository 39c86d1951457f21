"""
Gmail sync API request models.
Used by routes for input validation.
"""

from pydantic import BaseModel, Field

from mailsync.config import settings


class SyncRequest(BaseModel):
    """Request to run one sync pass for a connection."""

    connection_id: int = Field(..., description="Gmail connection to sync")
    days_since: int = Field(
        default=settings.GMAIL_SYNC_DEFAULT_DAYS,
        ge=0,
        description="Sync window in days; 0 means no date floor",
    )
    max_emails: int = Field(
        default=settings.GMAIL_SYNC_DEFAULT_MAX_EMAILS,
        gt=0,
        le=settings.GMAIL_SYNC_MAX_EMAILS_LIMIT,
        description="Maximum messages processed in this run",
    )
    timeout_seconds: float | None = Field(
        default=None, gt=0, description="Optional wall-clock budget for the run"
    )
