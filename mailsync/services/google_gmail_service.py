"""
Google Gmail API client for read-only sync.

One GmailClient is built per sync (or OAuth callback) around the app-scoped
httpx.AsyncClient and the connection it reads. Every call obtains a fresh
token first; a 401 gets one forced refresh and one retry.
"""

from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

import httpx

from mailsync.config import settings
from mailsync.infrastructure.observability.logging import get_logger
from mailsync.models.domain.connection_domain import GmailConnection
from mailsync.models.domain.gmail_domain import (
    GmailMessage,
    MessagePage,
    MessageRef,
    build_sync_query,
)
from mailsync.services.errors import AuthExpiredError, GmailAPIError
from mailsync.services.retry_policy import RetryPolicy, send_with_retry
from mailsync.services.token_service import TokenService

logger = get_logger(__name__)

# Google Gmail API configuration
GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_USER_ID = "me"
GMAIL_LIST_LIMIT = 500  # messages.list maxResults ceiling


class GmailClient:
    """Typed wrapper over the Gmail v1 endpoints used by sync."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        connection: GmailConnection,
        token_service: TokenService,
        retry_policy: RetryPolicy | None = None,
        base_url: str = GMAIL_API_BASE_URL,
    ):
        self.http_client = http_client
        self.connection = connection
        self.token_service = token_service
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.base_url = base_url.rstrip("/")

    def _url(self, path: str) -> str:
        return f"{self.base_url}/users/{GMAIL_USER_ID}/{path.lstrip('/')}"

    async def _send(
        self, method: str, path: str, params: dict | None, operation: str
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.connection.access_token}",
            "Accept": "application/json",
        }
        url = self._url(path)
        return await send_with_retry(
            lambda: self.http_client.request(method, url, params=params, headers=headers),
            self.retry_policy,
            operation=operation,
        )

    async def _request(
        self, method: str, path: str, operation: str, params: dict | None = None
    ) -> dict[str, Any]:
        self.connection = await self.token_service.ensure_fresh_token(self.connection)
        response = await self._send(method, path, params, operation)

        if response.status_code == 401:
            logger.info(
                "Gmail API returned 401, forcing token refresh",
                connection_id=self.connection.id,
                operation=operation,
            )
            self.connection = await self.token_service.ensure_fresh_token(
                self.connection, force=True
            )
            response = await self._send(method, path, params, operation)
            if response.status_code == 401:
                logger.warning(
                    "Gmail API rejected refreshed token",
                    connection_id=self.connection.id,
                    operation=operation,
                )
                raise AuthExpiredError(
                    "Gmail rejected the refreshed access token",
                    user_id=self.connection.user_id,
                )

        return self._handle_api_response(response, operation)

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict[str, Any]:
        """
        Handle and validate Gmail API response.

        Raises:
            GmailAPIError: Non-success status that the retry policy does not cover
        """
        logger.debug(
            f"Gmail API {operation} response",
            status_code=response.status_code,
            response_size=len(response.content),
        )

        if response.is_success:
            try:
                return response.json() if response.content else {}
            except ValueError as e:
                logger.error(f"Failed to parse Gmail API {operation} response", error=str(e))
                raise GmailAPIError(
                    f"Invalid response format: {e}", status_code=response.status_code
                ) from e

        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        error_message = error_info.get("message") or f"HTTP {response.status_code}"

        logger.error(
            f"Gmail API {operation} failed",
            status_code=response.status_code,
            error_message=error_message,
        )
        raise GmailAPIError(
            f"Gmail {operation} failed: {error_message}",
            status_code=response.status_code,
            response_data=error_data if isinstance(error_data, dict) else {},
            user_id=self.connection.user_id,
        )

    async def get_profile(self) -> str:
        """Return the mailbox address of the authorized account."""
        data = await self._request("GET", "profile", operation="get_profile")
        email_address = data.get("emailAddress")
        if not email_address:
            raise GmailAPIError("Gmail profile response has no emailAddress", response_data=data)
        return email_address.lower()

    async def list_messages(
        self,
        query: str | None = None,
        page_token: str | None = None,
        max_results: int = 100,
    ) -> MessagePage:
        """List one page of message refs, newest first."""
        params: dict[str, Any] = {"maxResults": max(1, min(max_results, GMAIL_LIST_LIMIT))}
        if query:
            params["q"] = query
        if page_token:
            params["pageToken"] = page_token

        data = await self._request("GET", "messages", operation="list_messages", params=params)

        refs = [
            MessageRef(id=item["id"], thread_id=item.get("threadId"))
            for item in data.get("messages", [])
            if item.get("id")
        ]
        return MessagePage(
            refs=refs,
            next_page_token=data.get("nextPageToken"),
            result_size_estimate=data.get("resultSizeEstimate", 0),
        )

    async def get_message(self, message_id: str) -> GmailMessage:
        """Fetch a full message and parse it."""
        data = await self._request(
            "GET", f"messages/{message_id}", operation="get_message", params={"format": "full"}
        )
        return GmailMessage(data)

    async def iter_message_refs(
        self,
        days_since: int,
        max_emails: int,
        page_size: int | None = None,
        now: datetime | None = None,
    ) -> AsyncIterator[MessageRef]:
        """
        Yield at most max_emails refs for the sync window.

        Page size shrinks to the remaining budget so no page is requested
        beyond what will be consumed.
        """
        query = build_sync_query(days_since, now=now)
        page_size = page_size or settings.GMAIL_SYNC_PAGE_SIZE
        remaining = max_emails
        page_token = None

        while remaining > 0:
            page = await self.list_messages(
                query=query, page_token=page_token, max_results=min(page_size, remaining)
            )
            for ref in page.refs[:remaining]:
                remaining -= 1
                yield ref

            if not page.refs or not page.next_page_token:
                break
            page_token = page.next_page_token

    async def revoke(self) -> None:
        """
        Revoke the connection's access token at Google.

        Raises:
            RevokeFailedError: Google refused or could not be reached
        """
        await self.token_service.oauth_service.revoke_token(self.connection.access_token)
