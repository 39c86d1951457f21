"""
OAuth State Service for CSRF protection of the Gmail connect flow.

State is a short-lived HS256 JWT bound to the initiating user, so the callback
can be verified without server-side storage.
"""

import secrets
import time

import jwt

from mailsync.config import settings
from mailsync.infrastructure.observability.logging import get_logger
from mailsync.services.errors import ConnectionFlowError

logger = get_logger(__name__)

STATE_ALGORITHM = "HS256"
STATE_AUDIENCE = "gmail-connect"
STATE_NONCE_BYTES = 16


class OAuthStateService:
    """Sign and verify OAuth state parameters."""

    def __init__(self, secret: str | None = None, ttl_seconds: int | None = None):
        self.secret = secret or settings.oauth_state_secret()
        self.ttl_seconds = ttl_seconds or settings.OAUTH_STATE_TTL_SECONDS
        if not self.secret:
            raise ConnectionFlowError(
                "OAUTH_STATE_SECRET not configured", error_code="configuration_error"
            )

    def generate_state(self, user_id: str, now: int | None = None) -> str:
        """
        Generate a signed state parameter for the given user.

        Args:
            user_id: UUID string of the user initiating the OAuth flow
            now: Issue time override (epoch seconds)

        Returns:
            str: Signed state token
        """
        issued_at = int(now if now is not None else time.time())
        payload = {
            "sub": user_id,
            "aud": STATE_AUDIENCE,
            "iat": issued_at,
            "exp": issued_at + self.ttl_seconds,
            "nonce": secrets.token_urlsafe(STATE_NONCE_BYTES),
        }
        state = jwt.encode(payload, self.secret, algorithm=STATE_ALGORITHM)

        logger.info(
            "OAuth state generated",
            user_id=user_id,
            ttl_seconds=self.ttl_seconds,
        )
        return state

    def verify_state(self, state: str, expected_user_id: str) -> dict:
        """
        Verify state signature, expiry and ownership.

        Returns:
            dict: Decoded state claims

        Raises:
            ConnectionFlowError: invalid_state, expired_state or user_mismatch
        """
        if not state:
            raise ConnectionFlowError("Missing OAuth state", error_code="invalid_state")

        try:
            claims = jwt.decode(
                state,
                self.secret,
                algorithms=[STATE_ALGORITHM],
                audience=STATE_AUDIENCE,
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as e:
            logger.warning("OAuth state expired", expected_user_id=expected_user_id)
            raise ConnectionFlowError(
                "OAuth state expired, please reconnect", error_code="expired_state"
            ) from e
        except jwt.InvalidTokenError as e:
            logger.warning(
                "OAuth state rejected",
                expected_user_id=expected_user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ConnectionFlowError("Invalid OAuth state", error_code="invalid_state") from e

        if claims.get("sub") != expected_user_id:
            logger.warning(
                "OAuth state user mismatch",
                expected_user_id=expected_user_id,
                state_user_id=claims.get("sub"),
            )
            raise ConnectionFlowError(
                "OAuth state does not belong to the current user",
                error_code="user_mismatch",
            )

        return claims
