# models/domain/connection_domain.py
"""
Gmail connection domain model (decrypted tokens).
One authorized mailbox per (user_id, email_address).
"""

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel


class GmailConnection(BaseModel):
    """Domain model for a stored Gmail connection with decrypted credentials."""

    id: int | None = None  # None until persisted (OAuth callback profile lookup)
    user_id: str
    email_address: str
    access_token: str
    refresh_token: str
    token_expiry: datetime | None = None
    scope: str = ""
    is_active: bool = True
    last_sync_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if access token is expired."""
        if not self.token_expiry:
            return False
        return (now or datetime.now(UTC)) >= self.token_expiry

    def needs_refresh(self, buffer_minutes: int = 5, now: datetime | None = None) -> bool:
        """Check if token is expired or expires within the safety margin."""
        if not self.token_expiry:
            return False
        buffer_time = (now or datetime.now(UTC)) + timedelta(minutes=buffer_minutes)
        return buffer_time >= self.token_expiry

    def has_gmail_read_access(self) -> bool:
        """Check if the granted scope allows reading messages."""
        scopes = self.scope.split() if self.scope else []
        return any("gmail.readonly" in scope or "gmail.modify" in scope for scope in scopes)

