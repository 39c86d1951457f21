# models/api/oauth_response.py
"""
OAuth API response models for the Gmail connection flow.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from mailsync.models.api.gmail_response import SyncRunResponse
from mailsync.models.domain.connection_domain import GmailConnection
from mailsync.models.domain.sync_domain import SyncRun


class GmailAuthURLResponse(BaseModel):
    """Response containing Google OAuth URL for read-only Gmail access."""

    auth_url: str = Field(..., description="Google OAuth authorization URL")
    state: str = Field(..., description="Signed OAuth state parameter")


class GmailConnectionResponse(BaseModel):
    """Token-free view of a stored connection."""

    id: int
    email_address: str
    is_active: bool
    token_expiry: datetime | None = None
    last_sync_at: datetime | None = None
    created_at: datetime | None = None
    last_sync: SyncRunResponse | None = Field(
        default=None, description="Most recent sync run for this connection"
    )

    @classmethod
    def from_connection(
        cls, connection: GmailConnection, last_run: SyncRun | None = None
    ) -> "GmailConnectionResponse":
        return cls(
            id=connection.id,
            email_address=connection.email_address,
            is_active=connection.is_active,
            token_expiry=connection.token_expiry,
            last_sync_at=connection.last_sync_at,
            created_at=connection.created_at,
            last_sync=SyncRunResponse.from_run(last_run) if last_run else None,
        )


class GmailAuthCallbackResponse(BaseModel):
    """Response after Google OAuth callback."""

    success: bool = Field(..., description="Whether connection was successful")
    message: str = Field(..., description="User-friendly status message")
    connection: GmailConnectionResponse


class GmailDisconnectResponse(BaseModel):
    success: bool
    revoked: bool = Field(..., description="Whether Google confirmed token revocation")


class GmailAuthStatusResponse(BaseModel):
    """Connected mailboxes for the caller."""

    connected: bool
    connections: list[GmailConnectionResponse] = Field(default_factory=list)
