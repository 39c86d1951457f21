"""
Gmail connection lifecycle: connect, OAuth callback, disconnect, listing.
"""

import httpx

from mailsync.infrastructure.observability.logging import get_logger
from mailsync.models.domain.connection_domain import GmailConnection
from mailsync.models.domain.sync_domain import SyncRun
from mailsync.repositories.connection_repository import ConnectionRepository
from mailsync.repositories.sync_log_repository import SyncLogRepository
from mailsync.services.errors import (
    ConnectionFlowError,
    ConnectionNotFoundError,
    RevokeFailedError,
)
from mailsync.services.google_gmail_service import GmailClient
from mailsync.services.google_oauth_service import GoogleOAuthError, GoogleOAuthService
from mailsync.services.oauth_state_service import OAuthStateService
from mailsync.services.retry_policy import RetryPolicy
from mailsync.services.token_service import TokenService

logger = get_logger(__name__)


class ConnectionService:
    """
    High-level service for Gmail OAuth connection management.

    Orchestrates the OAuth flow and keeps exactly one connection row per
    (user, mailbox).
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        oauth_service: GoogleOAuthService,
        state_service: OAuthStateService,
        connections: ConnectionRepository,
        sync_log: SyncLogRepository,
        token_service: TokenService,
        retry_policy: RetryPolicy | None = None,
    ):
        self.http_client = http_client
        self.oauth_service = oauth_service
        self.state_service = state_service
        self.connections = connections
        self.sync_log = sync_log
        self.token_service = token_service
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    def _gmail_client(self, connection: GmailConnection) -> GmailClient:
        return GmailClient(
            self.http_client, connection, self.token_service, retry_policy=self.retry_policy
        )

    def start_connect(self, user_id: str) -> tuple[str, str]:
        """
        Initiate OAuth flow for Gmail connection.

        Returns:
            tuple[str, str]: (auth_url, state)
        """
        state = self.state_service.generate_state(user_id)
        auth_url = self.oauth_service.generate_oauth_url(state)

        logger.info("OAuth flow initiated", user_id=user_id)
        return auth_url, state

    async def complete_callback(self, user_id: str, code: str, state: str) -> GmailConnection:
        """
        Complete OAuth flow and store the connection.

        Args:
            user_id: Authenticated caller
            code: Authorization code from Google
            state: Signed state issued by start_connect

        Returns:
            GmailConnection: Stored connection (same id when reconnecting a mailbox)

        Raises:
            ConnectionFlowError: Bad state, rejected code, or no refresh token granted
            ProviderUnavailableError: Google unreachable after retries
            GmailAPIError: Profile lookup rejected
        """
        self.state_service.verify_state(state, user_id)

        logger.info(
            "Completing Gmail OAuth flow",
            user_id=user_id,
            code_preview=code[:12] + "...",
        )

        try:
            tokens = await self.oauth_service.exchange_code_for_tokens(code)
        except GoogleOAuthError as e:
            logger.warning(
                "Authorization code exchange rejected",
                user_id=user_id,
                error_code=e.error_code,
            )
            raise ConnectionFlowError(
                str(e), error_code="code_exchange_failed", user_id=user_id
            ) from e

        if not tokens.refresh_token:
            logger.warning("Google granted no refresh token", user_id=user_id)
            raise ConnectionFlowError(
                "Google did not grant offline access; remove the app from your Google "
                "account permissions and connect again",
                error_code="no_refresh_token",
                recoverable=False,
                user_id=user_id,
            )

        pending = GmailConnection(
            user_id=user_id,
            email_address="",
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expiry=tokens.expires_at,
            scope=tokens.scope,
        )
        email_address = await self._gmail_client(pending).get_profile()

        connection = await self.connections.upsert(
            user_id=user_id,
            email_address=email_address,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expiry=tokens.expires_at,
            scope=tokens.scope,
        )

        logger.info(
            "Gmail connection established",
            user_id=user_id,
            connection_id=connection.id,
            has_gmail_access=connection.has_gmail_read_access(),
        )
        return connection

    async def disconnect(self, user_id: str, connection_id: int) -> bool:
        """
        Revoke at Google (best effort) and delete the local connection.

        Returns:
            bool: Whether the remote revocation succeeded

        Raises:
            ConnectionNotFoundError: Unknown or foreign connection
        """
        connection = await self.connections.get(connection_id, user_id)
        if connection is None:
            raise ConnectionNotFoundError(connection_id, user_id=user_id)

        revoked = True
        try:
            await self._gmail_client(connection).revoke()
        except RevokeFailedError as e:
            revoked = False
            logger.warning(
                "Token revocation failed, deleting connection anyway",
                user_id=user_id,
                connection_id=connection_id,
                error=str(e),
            )

        await self.connections.delete(connection_id, user_id)

        logger.info(
            "Gmail connection removed",
            user_id=user_id,
            connection_id=connection_id,
            revoked=revoked,
        )
        return revoked

    async def list_connections(
        self, user_id: str
    ) -> list[tuple[GmailConnection, SyncRun | None]]:
        """Active connections with their latest sync run."""
        connections = await self.connections.list_active_for_user(user_id)
        return [
            (connection, await self.sync_log.latest_for_connection(connection.id))
            for connection in connections
        ]
