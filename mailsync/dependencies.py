"""
Service wiring.

Services are built per request (or per job run) around the app-scoped
httpx.AsyncClient stored on app.state; nothing here holds mutable state.
"""

import httpx
from fastapi import Depends, HTTPException, Request, status

from mailsync.infrastructure.observability.logging import get_logger
from mailsync.repositories.connection_repository import ConnectionRepository
from mailsync.repositories.crm_repository import CrmRepository
from mailsync.repositories.sync_log_repository import SyncLogRepository
from mailsync.services.connection_service import ConnectionService
from mailsync.services.entity_resolver import EntityResolver
from mailsync.services.errors import ConnectionFlowError
from mailsync.services.google_oauth_service import GoogleOAuthError, GoogleOAuthService
from mailsync.services.oauth_state_service import OAuthStateService
from mailsync.services.retry_policy import RetryPolicy
from mailsync.services.sync_service import SyncOrchestrator
from mailsync.services.token_service import TokenService

logger = get_logger(__name__)


def build_sync_orchestrator(
    http_client: httpx.AsyncClient, retry_policy: RetryPolicy | None = None
) -> SyncOrchestrator:
    """Assemble an orchestrator over the Postgres repositories."""
    retry_policy = retry_policy or RetryPolicy.from_settings()
    connections = ConnectionRepository()
    oauth_service = GoogleOAuthService(http_client, retry_policy=retry_policy)
    return SyncOrchestrator(
        http_client=http_client,
        connections=connections,
        sync_log=SyncLogRepository(),
        token_service=TokenService(oauth_service, connections),
        resolver=EntityResolver(CrmRepository()),
        retry_policy=retry_policy,
    )


def build_connection_service(
    http_client: httpx.AsyncClient, retry_policy: RetryPolicy | None = None
) -> ConnectionService:
    retry_policy = retry_policy or RetryPolicy.from_settings()
    connections = ConnectionRepository()
    oauth_service = GoogleOAuthService(http_client, retry_policy=retry_policy)
    return ConnectionService(
        http_client=http_client,
        oauth_service=oauth_service,
        state_service=OAuthStateService(),
        connections=connections,
        sync_log=SyncLogRepository(),
        token_service=TokenService(oauth_service, connections),
        retry_policy=retry_policy,
    )


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_sync_orchestrator(
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> SyncOrchestrator:
    try:
        return build_sync_orchestrator(http_client)
    except GoogleOAuthError as e:
        logger.error("Gmail sync not configured", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gmail service temporarily unavailable",
        ) from None


def get_connection_service(
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> ConnectionService:
    try:
        return build_connection_service(http_client)
    except (GoogleOAuthError, ConnectionFlowError) as e:
        logger.error("Gmail connection flow not configured", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gmail service temporarily unavailable",
        ) from None
