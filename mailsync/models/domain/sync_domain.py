# models/domain/sync_domain.py
"""
Sync run domain models.

A SyncRun row is created in_progress when the orchestrator claims the
connection and is written exactly once more with its terminal status.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from mailsync.models.domain.crm_domain import EmailDirection

SyncRunStatus = Literal["in_progress", "completed", "failed"]
SyncType = Literal["manual", "automatic"]


class SyncState(str, Enum):
    """Orchestrator states for a single sync invocation."""

    IDLE = "idle"
    CLAIMING = "claiming"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncErrorEntry(BaseModel):
    """A per-message failure recorded on the run."""

    message_ref: str
    reason: str


class SyncRun(BaseModel):
    """One ingestion attempt against a connection."""

    id: int
    connection_id: int
    user_id: str
    sync_type: SyncType = "manual"
    status: SyncRunStatus
    emails_processed: int = 0
    companies_created: int = 0
    contacts_created: int = 0
    interactions_created: int = 0
    emails_skipped: int = 0
    errors: list[SyncErrorEntry] = Field(default_factory=list)
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "in_progress"


class ResolvedParticipant(BaseModel):
    """CRM rows linked for one external participant of a message."""

    email: str
    direction: EmailDirection
    company_id: int | None = None
    contact_id: int
    interaction_id: int
    company_created: bool = False
    contact_created: bool = False
    interaction_created: bool = False


class ResolveOutcome(BaseModel):
    """What the entity resolver created for one message, per participant in header order."""

    participants: list[ResolvedParticipant] = Field(default_factory=list)

    @property
    def companies_created(self) -> int:
        return sum(p.company_created for p in self.participants)

    @property
    def contacts_created(self) -> int:
        return sum(p.contact_created for p in self.participants)

    @property
    def interactions_created(self) -> int:
        return sum(p.interaction_created for p in self.participants)


class SyncAggregates(BaseModel):
    """Running totals folded from per-message outcomes."""

    emails_processed: int = 0
    companies_created: int = 0
    contacts_created: int = 0
    interactions_created: int = 0
    emails_skipped: int = 0
    errors: list[SyncErrorEntry] = Field(default_factory=list)

    def record_outcome(self, outcome: ResolveOutcome) -> None:
        self.companies_created += outcome.companies_created
        self.contacts_created += outcome.contacts_created
        self.interactions_created += outcome.interactions_created

    def record_error(self, message_ref: str, reason: str) -> None:
        self.errors.append(SyncErrorEntry(message_ref=message_ref, reason=reason))


class SyncResult(BaseModel):
    """Structured result returned to the trigger surface."""

    success: bool
    status: SyncRunStatus
    sync_run_id: int | None = None
    emails_processed: int = 0
    companies_created: int = 0
    contacts_created: int = 0
    interactions_created: int = 0
    emails_skipped: int = 0
    errors: list[SyncErrorEntry] = Field(default_factory=list)
    failure_reason: str | None = None
    timed_out: bool = False


class SyncStatusSnapshot(BaseModel):
    """Polling view of a connection's sync history."""

    in_progress: bool
    recent_runs: list[SyncRun] = Field(default_factory=list)
