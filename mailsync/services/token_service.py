"""
Token Service for Gmail connection credentials.
Refreshes access tokens ahead of expiry and persists the result.
"""

from datetime import UTC, datetime

from mailsync.config import settings
from mailsync.infrastructure.observability.logging import get_logger
from mailsync.models.domain.connection_domain import GmailConnection
from mailsync.repositories.connection_repository import ConnectionRepository
from mailsync.services.errors import AuthExpiredError, TokenRefreshError
from mailsync.services.google_oauth_service import GoogleOAuthError, GoogleOAuthService

logger = get_logger(__name__)


class TokenService:
    """
    Keeps a connection's access token usable.

    ProviderUnavailableError from the OAuth service propagates unchanged;
    it has already been retried per the retry policy.
    """

    def __init__(
        self,
        oauth_service: GoogleOAuthService,
        connections: ConnectionRepository,
        buffer_minutes: int | None = None,
    ):
        self.oauth_service = oauth_service
        self.connections = connections
        self.buffer_minutes = (
            buffer_minutes if buffer_minutes is not None else settings.TOKEN_REFRESH_BUFFER_MINUTES
        )

    async def ensure_fresh_token(
        self,
        connection: GmailConnection,
        force: bool = False,
        now: datetime | None = None,
    ) -> GmailConnection:
        """
        Return a connection whose access token is valid beyond the safety margin.

        Args:
            connection: Current connection (decrypted)
            force: Refresh even if the token looks valid (after a 401)
            now: Clock override

        Returns:
            GmailConnection: The same object when no refresh was needed,
            otherwise the updated row

        Raises:
            AuthExpiredError: Refresh token revoked or invalid; connection deactivated
            TokenRefreshError: Any other permanent token endpoint refusal
            ProviderUnavailableError: Token endpoint unreachable after retries
        """
        now = now or datetime.now(UTC)

        if not force and not connection.needs_refresh(buffer_minutes=self.buffer_minutes, now=now):
            logger.debug(
                "Token refresh not needed",
                connection_id=connection.id,
                token_expiry=(
                    connection.token_expiry.isoformat() if connection.token_expiry else None
                ),
            )
            return connection

        logger.info(
            "Refreshing Gmail access token",
            connection_id=connection.id,
            user_id=connection.user_id,
            forced=force,
        )

        try:
            token_response = await self.oauth_service.refresh_access_token(connection.refresh_token)
        except GoogleOAuthError as e:
            if e.is_invalid_grant:
                logger.warning(
                    "Refresh token rejected, deactivating connection",
                    connection_id=connection.id,
                    user_id=connection.user_id,
                )
                if connection.id is not None:
                    await self.connections.mark_inactive(connection.id)
                raise AuthExpiredError(
                    "Gmail authorization expired, please reconnect",
                    user_id=connection.user_id,
                ) from e

            logger.error(
                "Token refresh failed",
                connection_id=connection.id,
                error_code=e.error_code,
                error=str(e),
            )
            raise TokenRefreshError(
                f"Token refresh failed: {e}",
                error_code="token_refresh_failed",
                user_id=connection.user_id,
            ) from e

        if connection.id is None:
            # Not persisted yet (callback flow)
            return connection.model_copy(
                update={
                    "access_token": token_response.access_token,
                    "refresh_token": token_response.refresh_token,
                    "token_expiry": token_response.expires_at,
                }
            )

        refreshed = await self.connections.update_tokens(
            connection.id,
            access_token=token_response.access_token,
            refresh_token=token_response.refresh_token,
            token_expiry=token_response.expires_at,
            scope=token_response.scope or None,
        )

        logger.info(
            "Token refresh successful",
            connection_id=connection.id,
            new_expires_at=refreshed.token_expiry.isoformat() if refreshed.token_expiry else None,
        )
        return refreshed
