"""
Gmail Sync Routes
HTTP endpoints to trigger a sync pass and poll sync history.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from mailsync.auth.verify import auth_dependency
from mailsync.dependencies import get_sync_orchestrator
from mailsync.infrastructure.observability.logging import get_logger
from mailsync.models.api.gmail_request import SyncRequest
from mailsync.models.api.gmail_response import SyncResponse, SyncRunResponse, SyncStatusResponse
from mailsync.services.errors import ConnectionNotFoundError, SyncAlreadyRunningError
from mailsync.services.sync_service import SyncOrchestrator

logger = get_logger(__name__)

router = APIRouter(prefix="/gmail", tags=["gmail-sync"])


@router.post("/sync", response_model=SyncResponse)
async def trigger_sync(
    request: SyncRequest,
    claims: dict = Depends(auth_dependency),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    """
    Run one sync pass for a connection and return its outcome.

    A run that fails for a run-level reason (expired authorization, Google
    unavailable) still returns 200 with success=false and failure_reason.

    Raises:
        401: Invalid authentication token
        404: Unknown or inactive connection
        409: A sync is already running for this connection
    """
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        result = await orchestrator.run_sync(
            user_id=user_id,
            connection_id=request.connection_id,
            days_since=request.days_since,
            max_emails=request.max_emails,
            timeout_seconds=request.timeout_seconds,
            sync_type="manual",
        )

    except ConnectionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Gmail connection not found or inactive",
        ) from None

    except SyncAlreadyRunningError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "sync_already_running", "message": "A sync is already in progress"},
        ) from None

    except Exception as e:
        logger.error(
            "Gmail sync request failed",
            user_id=user_id,
            connection_id=request.connection_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Gmail sync failed"
        ) from None

    return SyncResponse(**result.model_dump())


@router.get("/sync/status", response_model=SyncStatusResponse)
async def get_sync_status(
    connection_id: int = Query(..., description="Gmail connection to inspect"),
    claims: dict = Depends(auth_dependency),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    """Recent sync runs for a connection, newest first."""
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        snapshot = await orchestrator.get_sync_status(user_id, connection_id)

    except ConnectionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Gmail connection not found"
        ) from None

    except Exception as e:
        logger.error(
            "Failed to load sync status",
            user_id=user_id,
            connection_id=connection_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to get sync status"
        ) from None

    return SyncStatusResponse(
        in_progress=snapshot.in_progress,
        recent_runs=[SyncRunResponse.from_run(run) for run in snapshot.recent_runs],
    )
