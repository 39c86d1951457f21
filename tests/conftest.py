import os

os.environ.setdefault("ENCRYPTION_KEY", "YWFh" * 10 + "YWE=")
os.environ.setdefault("OAUTH_STATE_SECRET", "test-state-secret-with-enough-length")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")

import asyncio  # noqa: E402
import base64  # noqa: E402
import itertools  # noqa: E402
from datetime import UTC, datetime, timedelta  # noqa: E402
from urllib.parse import parse_qsl  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from mailsync.auth.verify import auth_dependency  # noqa: E402
from mailsync.models.domain.connection_domain import GmailConnection  # noqa: E402
from mailsync.models.domain.crm_domain import Company, Contact, Interaction  # noqa: E402
from mailsync.models.domain.sync_domain import SyncRun  # noqa: E402
from mailsync.repositories.crm_repository import DEFAULT_CONTACT_STATUS  # noqa: E402
from mailsync.services.entity_resolver import EntityResolver  # noqa: E402
from mailsync.services.errors import SyncAlreadyRunningError  # noqa: E402
from mailsync.services.google_oauth_service import GoogleOAuthService  # noqa: E402
from mailsync.services.retry_policy import RetryPolicy  # noqa: E402
from mailsync.services.sync_service import SyncOrchestrator  # noqa: E402
from mailsync.services.token_service import TokenService  # noqa: E402

USER_ID = "user-123"
MAILBOX = "me@mycompany.com"
GRANTED_SCOPE = (
    "https://www.googleapis.com/auth/gmail.readonly "
    "https://www.googleapis.com/auth/userinfo.email"
)


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": USER_ID}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


# ----------------------------------------------------------------------
# Gmail payloads
# ----------------------------------------------------------------------


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_message(
    message_id: str,
    sender: str,
    to: str = MAILBOX,
    subject: str = "Hello",
    body: str = "Hi there, following up on our chat.",
    cc: str | None = None,
    date: str = "Mon, 06 Oct 2025 10:00:00 +0000",
) -> dict:
    """Gmail messages.get (format=full) payload with a plain text body."""
    headers = [
        {"name": "From", "value": sender},
        {"name": "To", "value": to},
        {"name": "Subject", "value": subject},
        {"name": "Date", "value": date},
    ]
    if cc:
        headers.append({"name": "Cc", "value": cc})
    return {
        "id": message_id,
        "threadId": f"thread-{message_id}",
        "snippet": body[:100],
        "internalDate": "1759744800000",
        "payload": {
            "mimeType": "text/plain",
            "headers": headers,
            "body": {"data": _b64(body)},
        },
    }


class FakeGoogle:
    """
    In-process stand-in for the Google token, revoke and Gmail endpoints.

    Messages are served newest first in insertion order; page tokens are
    offsets into that list.
    """

    def __init__(self):
        self.mailbox = MAILBOX
        self.messages: dict[str, dict] = {}
        self.token_calls = 0
        self.refresh_error: str | None = None
        self.exchange_error: str | None = None
        self.exchange_payload = {
            "access_token": "access-initial",
            "refresh_token": "refresh-initial",
            "expires_in": 3600,
            "token_type": "Bearer",
            "scope": GRANTED_SCOPE,
        }
        self.revoke_status = 200
        self.revoked: list[str] = []
        self.rejected_tokens: set[str] = set()
        self.gmail_status: int | None = None
        self.list_calls: list[dict] = []
        self.get_calls: list[str] = []
        self._issued = itertools.count(1)

    def add_messages(self, *messages: dict) -> None:
        for message in messages:
            self.messages[message["id"]] = message

    async def handler(self, request: httpx.Request) -> httpx.Response:
        # Yield to the loop like a real network call would
        await asyncio.sleep(0)

        if request.url.host == "oauth2.googleapis.com":
            form = dict(parse_qsl(request.content.decode("utf-8")))
            if request.url.path == "/token":
                return self._token(form)
            if request.url.path == "/revoke":
                self.revoked.append(form.get("token"))
                if self.revoke_status == 200:
                    return httpx.Response(200, json={})
                return httpx.Response(self.revoke_status, json={"error": "invalid_token"})

        if request.url.host == "gmail.googleapis.com":
            if self.gmail_status is not None:
                return httpx.Response(
                    self.gmail_status, json={"error": {"message": "Backend Error"}}
                )
            token = request.headers.get("Authorization", "").removeprefix("Bearer ")
            if token in self.rejected_tokens:
                return httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})
            return self._gmail(request)

        return httpx.Response(404, json={"error": "not_found"})

    def _token(self, form: dict) -> httpx.Response:
        self.token_calls += 1

        if form.get("grant_type") == "refresh_token":
            if self.refresh_error:
                return httpx.Response(
                    400, json={"error": self.refresh_error, "error_description": "Bad Request"}
                )
            return httpx.Response(
                200,
                json={
                    "access_token": f"access-refreshed-{next(self._issued)}",
                    "expires_in": 3600,
                    "token_type": "Bearer",
                    "scope": GRANTED_SCOPE,
                },
            )

        if self.exchange_error:
            return httpx.Response(400, json={"error": self.exchange_error})
        return httpx.Response(200, json=self.exchange_payload)

    def _gmail(self, request: httpx.Request) -> httpx.Response:
        resource = request.url.path.removeprefix("/gmail/v1/users/me/")

        if resource == "profile":
            return httpx.Response(200, json={"emailAddress": self.mailbox})

        if resource == "messages":
            params = dict(request.url.params)
            self.list_calls.append(params)
            ids = list(self.messages)
            start = int(params.get("pageToken", 0))
            size = int(params["maxResults"])
            body = {
                "messages": [
                    {"id": mid, "threadId": self.messages[mid]["threadId"]}
                    for mid in ids[start : start + size]
                ],
                "resultSizeEstimate": len(ids),
            }
            if start + size < len(ids):
                body["nextPageToken"] = str(start + size)
            return httpx.Response(200, json=body)

        message_id = resource.removeprefix("messages/")
        self.get_calls.append(message_id)
        if message_id in self.messages:
            return httpx.Response(200, json=self.messages[message_id])
        return httpx.Response(
            404, json={"error": {"code": 404, "message": "Requested entity was not found."}}
        )


# ----------------------------------------------------------------------
# In-memory repositories honoring the store's uniqueness rules
# ----------------------------------------------------------------------


class FakeConnectionRepository:
    def __init__(self):
        self.rows: dict[int, GmailConnection] = {}
        self._ids = itertools.count(1)

    def add(self, **fields) -> GmailConnection:
        connection = GmailConnection(id=next(self._ids), created_at=datetime.now(UTC), **fields)
        self.rows[connection.id] = connection
        return connection

    async def get(self, connection_id, user_id):
        connection = self.rows.get(connection_id)
        return connection if connection and connection.user_id == user_id else None

    async def get_active(self, connection_id, user_id):
        connection = await self.get(connection_id, user_id)
        return connection if connection and connection.is_active else None

    async def upsert(
        self, user_id, email_address, access_token, refresh_token, token_expiry, scope
    ):
        fields = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_expiry": token_expiry,
            "scope": scope,
            "is_active": True,
        }
        for connection in self.rows.values():
            if connection.user_id == user_id and connection.email_address == email_address.lower():
                updated = connection.model_copy(update=fields)
                self.rows[connection.id] = updated
                return updated
        return self.add(user_id=user_id, email_address=email_address.lower(), **fields)

    async def update_tokens(
        self, connection_id, access_token, refresh_token, token_expiry, scope=None
    ):
        update = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_expiry": token_expiry,
        }
        if scope:
            update["scope"] = scope
        updated = self.rows[connection_id].model_copy(update=update)
        self.rows[connection_id] = updated
        return updated

    async def mark_inactive(self, connection_id):
        self.rows[connection_id] = self.rows[connection_id].model_copy(
            update={"is_active": False}
        )

    async def delete(self, connection_id, user_id):
        if await self.get(connection_id, user_id) is None:
            return False
        del self.rows[connection_id]
        return True

    async def list_active_for_user(self, user_id):
        return [c for c in self.rows.values() if c.user_id == user_id and c.is_active]

    async def list_all_active(self):
        return [c for c in self.rows.values() if c.is_active]

    async def touch_last_sync(self, connection_id):
        if connection_id in self.rows:
            self.rows[connection_id] = self.rows[connection_id].model_copy(
                update={"last_sync_at": datetime.now(UTC)}
            )


class FakeSyncLogRepository:
    def __init__(self):
        self.runs: dict[int, SyncRun] = {}
        self._ids = itertools.count(1)

    async def claim_run(self, connection_id, user_id, sync_type):
        if any(
            run.connection_id == connection_id and run.status == "in_progress"
            for run in self.runs.values()
        ):
            raise SyncAlreadyRunningError(connection_id, user_id=user_id)
        run = SyncRun(
            id=next(self._ids),
            connection_id=connection_id,
            user_id=user_id,
            sync_type=sync_type,
            status="in_progress",
            started_at=datetime.now(UTC),
        )
        self.runs[run.id] = run
        return run

    async def finalize_run(self, run_id, status, aggregates, error_message=None):
        run = self.runs.get(run_id)
        if run is None or run.status != "in_progress":
            return None
        updated = run.model_copy(
            update={
                "status": status,
                "emails_processed": aggregates.emails_processed,
                "companies_created": aggregates.companies_created,
                "contacts_created": aggregates.contacts_created,
                "interactions_created": aggregates.interactions_created,
                "emails_skipped": aggregates.emails_skipped,
                "errors": list(aggregates.errors),
                "error_message": error_message,
                "completed_at": datetime.now(UTC),
            }
        )
        self.runs[run_id] = updated
        return updated

    async def list_recent(self, connection_id, user_id, limit=10):
        runs = [
            run
            for run in self.runs.values()
            if run.connection_id == connection_id and run.user_id == user_id
        ]
        return sorted(runs, key=lambda run: run.id, reverse=True)[:limit]

    async def latest_for_connection(self, connection_id):
        runs = [run for run in self.runs.values() if run.connection_id == connection_id]
        return max(runs, key=lambda run: run.id) if runs else None

    async def fail_stale_runs(self, older_than_minutes):
        cutoff = datetime.now(UTC) - timedelta(minutes=older_than_minutes)
        stale = [
            run
            for run in self.runs.values()
            if run.status == "in_progress" and run.started_at < cutoff
        ]
        for run in stale:
            self.runs[run.id] = run.model_copy(
                update={"status": "failed", "error_message": "stale_run"}
            )
        return len(stale)


class FakeCrmRepository:
    def __init__(self):
        self.companies: dict[int, Company] = {}
        self.contacts: dict[int, Contact] = {}
        self.interactions: dict[int, Interaction] = {}
        self._ids = itertools.count(1)

    def add_company(self, user_id, name, domain=None) -> Company:
        company = Company(id=next(self._ids), user_id=user_id, name=name, domain=domain)
        self.companies[company.id] = company
        return company

    def add_contact(self, user_id, email, name, status=DEFAULT_CONTACT_STATUS) -> Contact:
        contact = Contact(
            id=next(self._ids), user_id=user_id, name=name, email=email.lower(), status=status
        )
        self.contacts[contact.id] = contact
        return contact

    async def find_or_create_company(self, user_id, name, domain):
        for company in self.companies.values():
            if company.user_id == user_id and (company.domain or "").lower() == domain.lower():
                return company, False
        for company in sorted(self.companies.values(), key=lambda c: c.id):
            if (
                company.user_id == user_id
                and company.domain is None
                and company.name.lower() == name.lower()
            ):
                adopted = company.model_copy(update={"domain": domain.lower()})
                self.companies[company.id] = adopted
                return adopted, False
        return self.add_company(user_id, name, domain.lower()), True

    async def find_or_create_contact(self, user_id, email, name, company_id):
        for contact in self.contacts.values():
            if contact.user_id == user_id and contact.email == email.lower():
                return contact, False
        contact = Contact(
            id=next(self._ids),
            user_id=user_id,
            company_id=company_id,
            name=name,
            email=email.lower(),
            status=DEFAULT_CONTACT_STATUS,
        )
        self.contacts[contact.id] = contact
        return contact, True

    async def promote_contact_status(self, contact_id, from_status, to_status):
        contact = self.contacts.get(contact_id)
        if contact is None or contact.status != from_status:
            return False
        self.contacts[contact_id] = contact.model_copy(update={"status": to_status})
        return True

    async def find_or_create_interaction(self, draft):
        for interaction in self.interactions.values():
            if (
                interaction.contact_id == draft.contact_id
                and interaction.gmail_message_id == draft.gmail_message_id
            ):
                return interaction, False
        interaction = Interaction(id=next(self._ids), is_gmail_synced=True, **draft.model_dump())
        self.interactions[interaction.id] = interaction
        return interaction, True


# ----------------------------------------------------------------------
# Wiring
# ----------------------------------------------------------------------


@pytest.fixture
def fake_google():
    return FakeGoogle()


@pytest_asyncio.fixture
async def http_client(fake_google):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_google.handler)) as client:
        yield client


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_attempts=3, base_delay=0, jitter=0)


@pytest.fixture
def oauth_service(http_client, retry_policy):
    return GoogleOAuthService(
        http_client,
        retry_policy=retry_policy,
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri="http://localhost:8000/auth/gmail/callback",
    )


@pytest.fixture
def connections():
    return FakeConnectionRepository()


@pytest.fixture
def sync_log():
    return FakeSyncLogRepository()


@pytest.fixture
def crm():
    return FakeCrmRepository()


@pytest.fixture
def token_service(oauth_service, connections):
    return TokenService(oauth_service, connections, buffer_minutes=5)


@pytest.fixture
def connection(connections):
    return connections.add(
        user_id=USER_ID,
        email_address=MAILBOX,
        access_token="access-current",
        refresh_token="refresh-current",
        token_expiry=datetime.now(UTC) + timedelta(hours=1),
        scope=GRANTED_SCOPE,
    )


@pytest.fixture
def orchestrator(http_client, connections, sync_log, token_service, crm, retry_policy):
    return SyncOrchestrator(
        http_client=http_client,
        connections=connections,
        sync_log=sync_log,
        token_service=token_service,
        resolver=EntityResolver(crm),
        retry_policy=retry_policy,
    )
