"""
Google OAuth Service for read-only Gmail access.
Handles OAuth URL generation, code exchange, token refresh and revocation.
"""

from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import httpx

from mailsync.config import settings
from mailsync.infrastructure.observability.logging import get_logger
from mailsync.services.errors import RevokeFailedError
from mailsync.services.retry_policy import RetryPolicy, send_with_retry

logger = get_logger(__name__)

# OAuth configuration
GOOGLE_OAUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"

GMAIL_SYNC_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",  # Read messages
    "https://www.googleapis.com/auth/userinfo.email",  # Identify the mailbox
]


class GoogleOAuthError(Exception):
    """Permanent error response from the Google token endpoint."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}

    @property
    def is_invalid_grant(self) -> bool:
        return self.error_code == "invalid_grant"


class TokenResponse:
    """Structured representation of OAuth token response."""

    def __init__(self, data: dict):
        self.access_token = data.get("access_token")
        self.refresh_token = data.get("refresh_token")
        self.token_type = data.get("token_type", "Bearer")
        self.expires_in = data.get("expires_in")
        self.scope = data.get("scope", "")

        if self.expires_in:
            self.expires_at = datetime.now(UTC) + timedelta(seconds=int(self.expires_in))
        else:
            self.expires_at = None

    def is_valid(self) -> bool:
        """Check if token response contains required fields."""
        return bool(self.access_token and self.token_type)

    def has_gmail_access(self) -> bool:
        """Check if token has Gmail read access."""
        return any(scope in self.scope for scope in ("gmail.readonly", "gmail.modify"))


class GoogleOAuthService:
    """
    Service for Google OAuth 2.0 operations.

    Built around an injected httpx.AsyncClient owned by the application; the
    service holds no connection state of its own.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        retry_policy: RetryPolicy | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
    ):
        self.http_client = http_client
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.client_id = client_id or settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_CLIENT_SECRET
        self.redirect_uri = redirect_uri or settings.gmail_redirect_uri()
        self._validate_config()

    def _validate_config(self) -> None:
        """Validate Google OAuth configuration."""
        if not self.client_id:
            raise GoogleOAuthError(
                "GOOGLE_CLIENT_ID not configured", error_code="configuration_error"
            )
        if not self.client_secret:
            raise GoogleOAuthError(
                "GOOGLE_CLIENT_SECRET not configured", error_code="configuration_error"
            )

    async def _post_form(self, url: str, data: dict, operation: str) -> httpx.Response:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        return await send_with_retry(
            lambda: self.http_client.post(url, data=data, headers=headers),
            self.retry_policy,
            operation=operation,
        )

    def generate_oauth_url(self, state: str) -> str:
        """
        Generate Google OAuth authorization URL for offline Gmail read access.

        Args:
            state: Signed CSRF state parameter

        Returns:
            str: Complete OAuth authorization URL
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(GMAIL_SYNC_SCOPES),
            "response_type": "code",
            "state": state,
            "access_type": "offline",  # Request refresh token
            "prompt": "consent",  # Force consent screen so a refresh token is issued
            "include_granted_scopes": "true",
        }

        oauth_url = f"{GOOGLE_OAUTH_BASE_URL}?{urlencode(params)}"
        logger.info("OAuth URL generated", state_preview=state[:8] + "...")
        return oauth_url

    async def exchange_code_for_tokens(self, authorization_code: str) -> TokenResponse:
        """
        Exchange authorization code for access and refresh tokens.

        Raises:
            GoogleOAuthError: Token endpoint rejected the code
            ProviderUnavailableError: Network or 5xx failures outlasted the retry policy
        """
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": authorization_code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }

        logger.info(
            "Exchanging authorization code for tokens",
            code_preview=authorization_code[:12] + "...",
        )

        response = await self._post_form(GOOGLE_TOKEN_URL, data, operation="code_exchange")
        return self._handle_token_response(response, "code_exchange")

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Refresh access token using refresh token.

        Args:
            refresh_token: Stored refresh token

        Returns:
            TokenResponse: New access token; the refresh token is rotated when
            Google returns one and preserved otherwise

        Raises:
            GoogleOAuthError: Permanent refusal (invalid_grant, invalid_client, ...)
            ProviderUnavailableError: Network or 5xx failures outlasted the retry policy
        """
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        logger.info(
            "Refreshing access token",
            refresh_token_preview=refresh_token[:12] + "...",
        )

        response = await self._post_form(GOOGLE_TOKEN_URL, data, operation="token_refresh")
        token_response = self._handle_token_response(response, "token_refresh")

        # Google usually omits refresh_token on refresh
        if not token_response.refresh_token:
            token_response.refresh_token = refresh_token
            logger.debug("Preserved existing refresh token")

        return token_response

    async def revoke_token(self, token: str) -> None:
        """
        Revoke access or refresh token.

        Raises:
            RevokeFailedError: Google refused the revocation or could not be reached
        """
        logger.info("Revoking Google token", token_preview=token[:12] + "...")

        try:
            response = await self._post_form(
                GOOGLE_REVOKE_URL, {"token": token}, operation="token_revocation"
            )
        except Exception as e:
            logger.warning("Token revocation request failed", error=str(e))
            raise RevokeFailedError(f"Token revocation failed: {e}") from e

        if response.status_code != 200:
            logger.warning(
                "Token revocation failed",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise RevokeFailedError(f"Token revocation failed (HTTP {response.status_code})")

        logger.info("Google token revoked successfully")

    def _handle_token_response(self, response: httpx.Response, operation: str) -> TokenResponse:
        """
        Handle and validate token response from Google.

        Raises:
            GoogleOAuthError: If response is invalid or contains errors
        """
        logger.debug(
            f"Google {operation} response",
            status_code=response.status_code,
            response_size=len(response.content),
        )

        if not response.is_success:
            try:
                error_data = response.json()
            except ValueError:
                logger.error(
                    f"Google {operation} failed with non-JSON response",
                    status_code=response.status_code,
                    response_text=response.text[:200],
                )
                raise GoogleOAuthError(
                    f"Google OAuth service error (HTTP {response.status_code})",
                    status_code=response.status_code,
                ) from None

            error_code = error_data.get("error", "unknown_error")
            logger.error(
                f"Google {operation} failed",
                status_code=response.status_code,
                error_code=error_code,
                error_description=error_data.get("error_description", "No description provided"),
            )
            raise GoogleOAuthError(
                self._map_google_error(error_code),
                error_code=error_code,
                status_code=response.status_code,
                response_data=error_data,
            )

        try:
            token_response = TokenResponse(response.json())
        except ValueError as e:
            logger.error(
                f"Failed to parse Google {operation} response",
                response_text=response.text[:200],
                error=str(e),
            )
            raise GoogleOAuthError(
                f"Failed to parse Google response: {e}", error_code="invalid_response"
            ) from e

        if not token_response.is_valid():
            logger.error(
                f"Invalid token response from Google {operation}",
                has_access_token=bool(token_response.access_token),
            )
            raise GoogleOAuthError(
                "Invalid token response from Google", error_code="invalid_response"
            )

        logger.info(
            f"Google {operation} successful",
            expires_in=token_response.expires_in,
            has_refresh_token=bool(token_response.refresh_token),
            has_gmail_access=token_response.has_gmail_access(),
        )
        return token_response

    def _map_google_error(self, error_code: str) -> str:
        """Map Google OAuth error codes to user-friendly messages."""
        error_messages = {
            "access_denied": "Gmail access was denied. Please connect again and grant read access.",
            "invalid_grant": "Gmail authorization expired or was revoked. Please reconnect Gmail.",
            "invalid_client": "Gmail connection configuration error. Please contact support.",
            "invalid_request": "Invalid Gmail connection request. Please try again.",
            "unauthorized_client": "Gmail connection not authorized. Please contact support.",
            "invalid_scope": "Invalid Gmail permissions requested. Please contact support.",
        }

        return error_messages.get(
            error_code,
            f"Gmail connection failed ({error_code}). Please try again or contact support.",
        )
