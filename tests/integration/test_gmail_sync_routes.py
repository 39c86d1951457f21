from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.testclient import TestClient

from mailsync.dependencies import get_sync_orchestrator
from mailsync.models.domain.sync_domain import (
    SyncErrorEntry,
    SyncResult,
    SyncRun,
    SyncStatusSnapshot,
)
from mailsync.routes.gmail_sync import router as gmail_sync_router
from mailsync.services.errors import ConnectionNotFoundError, SyncAlreadyRunningError


class StubOrchestrator:
    def __init__(self, result=None, error=None, snapshot=None):
        self.result = result
        self.error = error
        self.snapshot = snapshot
        self.calls = []

    async def run_sync(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return self.result

    async def get_sync_status(self, user_id, connection_id):
        if self.error:
            raise self.error
        return self.snapshot


def _create_app(apply_auth_override, orchestrator):
    app = FastAPI()
    apply_auth_override(app)
    app.dependency_overrides[get_sync_orchestrator] = lambda: orchestrator
    app.include_router(gmail_sync_router)
    return app


def test_sync_returns_run_outcome(apply_auth_override):
    result = SyncResult(
        success=True,
        status="completed",
        sync_run_id=7,
        emails_processed=10,
        companies_created=2,
        contacts_created=3,
        interactions_created=9,
        errors=[SyncErrorEntry(message_ref="m7", reason="unparseable_sender: bad From")],
    )
    orchestrator = StubOrchestrator(result=result)
    client = TestClient(_create_app(apply_auth_override, orchestrator))

    response = client.post("/gmail/sync", json={"connection_id": 1, "max_emails": 10})

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "completed"
    assert payload["interactions_created"] == 9
    assert payload["errors"] == [{"message_ref": "m7", "reason": "unparseable_sender: bad From"}]
    assert orchestrator.calls == [
        {
            "user_id": "user-123",
            "connection_id": 1,
            "days_since": 30,
            "max_emails": 10,
            "timeout_seconds": None,
            "sync_type": "manual",
        }
    ]


def test_failed_run_is_still_a_200(apply_auth_override):
    result = SyncResult(
        success=False, status="failed", sync_run_id=8, failure_reason="auth_expired"
    )
    client = TestClient(_create_app(apply_auth_override, StubOrchestrator(result=result)))

    response = client.post("/gmail/sync", json={"connection_id": 1})

    assert response.status_code == 200
    assert response.json()["failure_reason"] == "auth_expired"


def test_sync_conflict(apply_auth_override):
    orchestrator = StubOrchestrator(error=SyncAlreadyRunningError(1))
    client = TestClient(_create_app(apply_auth_override, orchestrator))

    response = client.post("/gmail/sync", json={"connection_id": 1})

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "sync_already_running"


def test_sync_unknown_connection(apply_auth_override):
    orchestrator = StubOrchestrator(error=ConnectionNotFoundError(42))
    client = TestClient(_create_app(apply_auth_override, orchestrator))

    response = client.post("/gmail/sync", json={"connection_id": 42})

    assert response.status_code == 404


def test_sync_unexpected_error(apply_auth_override):
    orchestrator = StubOrchestrator(error=RuntimeError("boom"))
    client = TestClient(_create_app(apply_auth_override, orchestrator))

    response = client.post("/gmail/sync", json={"connection_id": 1})

    assert response.status_code == 500


def test_sync_rejects_invalid_budget(apply_auth_override):
    orchestrator = StubOrchestrator()
    client = TestClient(_create_app(apply_auth_override, orchestrator))

    for body in ({"connection_id": 1, "max_emails": 0}, {"connection_id": 1, "days_since": -1}):
        assert client.post("/gmail/sync", json=body).status_code == 422
    assert orchestrator.calls == []


def test_sync_status(apply_auth_override):
    run = SyncRun(
        id=3,
        connection_id=1,
        user_id="user-123",
        status="completed",
        emails_processed=4,
        errors=[SyncErrorEntry(message_ref="m1", reason="provider_error: 404")],
        started_at=datetime(2025, 10, 6, tzinfo=UTC),
    )
    snapshot = SyncStatusSnapshot(in_progress=False, recent_runs=[run])
    client = TestClient(_create_app(apply_auth_override, StubOrchestrator(snapshot=snapshot)))

    response = client.get("/gmail/sync/status", params={"connection_id": 1})

    assert response.status_code == 200
    payload = response.json()
    assert payload["in_progress"] is False
    assert payload["recent_runs"][0]["id"] == 3
    assert payload["recent_runs"][0]["error_count"] == 1


def test_sync_status_unknown_connection(apply_auth_override):
    orchestrator = StubOrchestrator(error=ConnectionNotFoundError(9))
    client = TestClient(_create_app(apply_auth_override, orchestrator))

    response = client.get("/gmail/sync/status", params={"connection_id": 9})

    assert response.status_code == 404


def test_sync_requires_authentication():
    app = FastAPI()
    app.include_router(gmail_sync_router)
    client = TestClient(app)

    response = client.post("/gmail/sync", json={"connection_id": 1})

    assert response.status_code in (401, 403)
