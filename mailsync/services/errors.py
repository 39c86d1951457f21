"""
Error taxonomy for the Gmail sync engine.

Run-level errors (AuthExpiredError, ProviderUnavailableError, TokenRefreshError)
end a sync run as failed. Per-message errors (UnparseableSenderError,
SkippedNoContactError, GmailAPIError on a single message) are recorded on the
run and never abort it.
"""


class MailSyncError(Exception):
    """Base class for sync engine errors."""

    error_code = "mail_sync_error"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        recoverable: bool = True,
        user_id: str | None = None,
    ):
        super().__init__(message)
        if error_code:
            self.error_code = error_code
        self.recoverable = recoverable
        self.user_id = user_id


class AuthExpiredError(MailSyncError):
    """Refresh token invalid or revoked - the user must reconnect."""

    error_code = "auth_expired"

    def __init__(self, message: str = "Gmail authorization expired", **kwargs):
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class ProviderUnavailableError(MailSyncError):
    """Transient network or provider fault that survived the retry budget."""

    error_code = "provider_unavailable"


class TokenRefreshError(MailSyncError):
    """Permanent token endpoint failure that is not a revoked grant."""

    error_code = "token_refresh_failed"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class GmailAPIError(MailSyncError):
    """Non-retryable Gmail API error response (4xx other than 401/429)."""

    error_code = "provider_error"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict | None = None,
        **kwargs,
    ):
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.response_data = response_data or {}


class RevokeFailedError(MailSyncError):
    """Token revocation at the provider failed (best effort on disconnect)."""

    error_code = "revoke_failed"


class SyncAlreadyRunningError(MailSyncError):
    """Another sync run holds the slot for this connection."""

    error_code = "sync_already_running"

    def __init__(self, connection_id: int, **kwargs):
        super().__init__(f"Sync already in progress for connection {connection_id}", **kwargs)
        self.connection_id = connection_id


class ConnectionNotFoundError(MailSyncError):
    """Connection missing, inactive, or owned by another user."""

    error_code = "connection_not_found"

    def __init__(self, connection_id: int, **kwargs):
        kwargs.setdefault("recoverable", False)
        super().__init__(f"Gmail connection {connection_id} not found or inactive", **kwargs)
        self.connection_id = connection_id


class ConnectionFlowError(MailSyncError):
    """OAuth connect/callback flow rejected (bad state, no refresh token, ...)."""

    error_code = "connection_failed"


class EntityResolutionError(MailSyncError):
    """Base for per-message resolver outcomes that create nothing."""


class UnparseableSenderError(EntityResolutionError):
    """No valid sender address could be parsed from the message."""

    error_code = "unparseable_sender"


class SkippedNoContactError(EntityResolutionError):
    """Message intentionally skipped (automated sender, no counterpart)."""

    error_code = "skipped_no_contact"
