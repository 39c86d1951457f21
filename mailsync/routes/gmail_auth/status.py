"""Gmail connection status route."""

from fastapi import APIRouter, Depends, HTTPException, status

from mailsync.auth.verify import auth_dependency
from mailsync.dependencies import get_connection_service
from mailsync.infrastructure.observability.logging import get_logger
from mailsync.models.api.oauth_response import GmailAuthStatusResponse, GmailConnectionResponse
from mailsync.services.connection_service import ConnectionService

logger = get_logger(__name__)

router = APIRouter()


@router.get("/status", response_model=GmailAuthStatusResponse)
async def get_connection_status(
    claims: dict = Depends(auth_dependency),
    service: ConnectionService = Depends(get_connection_service),
):
    """
    Active Gmail connections for the authenticated user, each with its latest sync run.

    Raises:
        401: Invalid authentication token
        500: Status check failed
    """
    user_id = claims.get("sub")
    if not user_id:
        logger.error("No user ID in JWT claims")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: missing user ID"
        )

    try:
        entries = await service.list_connections(user_id)
    except Exception as e:
        logger.error(
            "Failed to load Gmail connection status",
            user_id=user_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get Gmail connection status",
        ) from None

    connections = [
        GmailConnectionResponse.from_connection(connection, last_run)
        for connection, last_run in entries
    ]
    logger.debug("Gmail connection status retrieved", user_id=user_id, count=len(connections))
    return GmailAuthStatusResponse(connected=bool(connections), connections=connections)
