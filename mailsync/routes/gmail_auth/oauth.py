"""
Gmail OAuth routes for the connection flow.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from mailsync.auth.verify import auth_dependency
from mailsync.dependencies import get_connection_service
from mailsync.infrastructure.observability.logging import get_logger
from mailsync.models.api.oauth_request import GmailAuthCallbackRequest, GmailDisconnectRequest
from mailsync.models.api.oauth_response import (
    GmailAuthCallbackResponse,
    GmailAuthURLResponse,
    GmailConnectionResponse,
    GmailDisconnectResponse,
)
from mailsync.services.connection_service import ConnectionService
from mailsync.services.errors import (
    AuthExpiredError,
    ConnectionFlowError,
    ConnectionNotFoundError,
    GmailAPIError,
    ProviderUnavailableError,
    TokenRefreshError,
)

logger = get_logger(__name__)

router = APIRouter()

_STATE_ERROR_CODES = {"invalid_state", "expired_state", "user_mismatch"}


@router.get("/connect", response_model=GmailAuthURLResponse)
async def connect(
    claims: dict = Depends(auth_dependency),
    service: ConnectionService = Depends(get_connection_service),
):
    """
    Generate Google OAuth authorization URL for Gmail connection.

    Returns:
        GmailAuthURLResponse: OAuth URL and signed state parameter

    Raises:
        401: Invalid authentication token
        500: OAuth URL generation failed
    """
    user_id = claims.get("sub")
    if not user_id:
        logger.error("No user ID in JWT claims")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: missing user ID"
        )

    try:
        auth_url, state = service.start_connect(user_id)
    except Exception as e:
        logger.error(
            "Unexpected error during OAuth URL generation",
            user_id=user_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate Gmail authorization URL",
        ) from None

    return GmailAuthURLResponse(auth_url=auth_url, state=state)


@router.post("/callback", response_model=GmailAuthCallbackResponse)
async def oauth_callback(
    request: GmailAuthCallbackRequest,
    claims: dict = Depends(auth_dependency),
    service: ConnectionService = Depends(get_connection_service),
):
    """
    Handle OAuth callback and complete Gmail connection.

    Raises:
        400: Code rejected or no refresh token granted
        401: Invalid authentication token, state, or state owner
        502: Google unavailable or profile lookup failed
    """
    user_id = claims.get("sub")
    if not user_id:
        logger.error("No user ID in JWT claims")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: missing user ID"
        )

    try:
        connection = await service.complete_callback(user_id, request.code, request.state)

    except ConnectionFlowError as e:
        logger.warning(
            "Gmail OAuth callback rejected",
            user_id=user_id,
            error=str(e),
            error_code=e.error_code,
        )
        status_code = (
            status.HTTP_401_UNAUTHORIZED
            if e.error_code in _STATE_ERROR_CODES
            else status.HTTP_400_BAD_REQUEST
        )
        raise HTTPException(
            status_code=status_code, detail={"error": e.error_code, "message": str(e)}
        ) from None

    except (ProviderUnavailableError, GmailAPIError, AuthExpiredError, TokenRefreshError) as e:
        logger.error(
            "Google failure during OAuth callback",
            user_id=user_id,
            error=str(e),
            error_code=e.error_code,
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": e.error_code, "message": "Google is unavailable, please retry"},
        ) from None

    except Exception as e:
        logger.error(
            "Unexpected error during OAuth callback",
            user_id=user_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="An unexpected error occurred"
        ) from None

    return GmailAuthCallbackResponse(
        success=True,
        message=f"Gmail connected: {connection.email_address}",
        connection=GmailConnectionResponse.from_connection(connection),
    )


@router.post("/disconnect", response_model=GmailDisconnectResponse)
async def disconnect(
    request: GmailDisconnectRequest,
    claims: dict = Depends(auth_dependency),
    service: ConnectionService = Depends(get_connection_service),
):
    """
    Disconnect a Gmail mailbox.

    Revocation at Google is best effort; the local connection is always removed.

    Raises:
        401: Invalid authentication token
        404: Unknown connection
    """
    user_id = claims.get("sub")
    if not user_id:
        logger.error("No user ID in JWT claims")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: missing user ID"
        )

    try:
        revoked = await service.disconnect(user_id, request.connection_id)

    except ConnectionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Gmail connection not found"
        ) from None

    except Exception as e:
        logger.error(
            "Unexpected error during Gmail disconnect",
            user_id=user_id,
            connection_id=request.connection_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to disconnect Gmail"
        ) from None

    return GmailDisconnectResponse(success=True, revoked=revoked)
