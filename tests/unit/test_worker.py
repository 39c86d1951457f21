from datetime import UTC, datetime, timedelta

import pytest

from conftest import USER_ID
from mailsync.jobs import worker
from mailsync.jobs.gmail_sync_job import cleanup_stale_runs, sync_all_connections
from mailsync.models.domain.sync_domain import SyncResult
from mailsync.services.errors import SyncAlreadyRunningError


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_registry_exposes_sync_jobs():
    assert {"gmail_sync", "stale_sync_cleanup"} <= set(worker.JOB_REGISTRY)


def test_job_name_from_args_then_env(monkeypatch):
    monkeypatch.setenv("WORKER_JOB", "Stale_Sync_Cleanup ")

    assert worker._resolve_job_name(["GMAIL_SYNC"]) == "gmail_sync"
    assert worker._resolve_job_name([]) == "stale_sync_cleanup"

    monkeypatch.delenv("WORKER_JOB")
    assert worker._resolve_job_name([]) == "gmail_sync"


def test_main_exits_non_zero_when_job_fails(monkeypatch):
    async def failing_job():
        raise RuntimeError("store unavailable")

    monkeypatch.setitem(worker.JOB_REGISTRY, "failing", failing_job)
    monkeypatch.setattr(worker.sys, "argv", ["worker", "failing"])

    with pytest.raises(SystemExit) as exc_info:
        worker.main()

    assert exc_info.value.code == 1


class StubOrchestrator:
    def __init__(self, busy_ids=(), broken_ids=()):
        self.busy_ids = set(busy_ids)
        self.broken_ids = set(broken_ids)
        self.calls = []

    async def run_sync(self, user_id, connection_id, sync_type="manual"):
        self.calls.append((user_id, connection_id, sync_type))
        if connection_id in self.busy_ids:
            raise SyncAlreadyRunningError(connection_id)
        if connection_id in self.broken_ids:
            raise RuntimeError("database went away")
        return SyncResult(success=True, status="completed", emails_processed=2)


def _add_connections(connections, count):
    return [
        connections.add(
            user_id=USER_ID,
            email_address=f"box{i}@mycompany.com",
            access_token=f"access-{i}",
            refresh_token=f"refresh-{i}",
        )
        for i in range(count)
    ]


@pytest.mark.asyncio
async def test_sync_all_connections_runs_automatic_syncs(connections):
    first, second, third = _add_connections(connections, 3)
    await connections.mark_inactive(third.id)
    orchestrator = StubOrchestrator()

    summary = await sync_all_connections(orchestrator, connections)

    assert orchestrator.calls == [
        (USER_ID, first.id, "automatic"),
        (USER_ID, second.id, "automatic"),
    ]
    assert summary["runs_completed"] == 2
    assert summary["emails_processed"] == 4


@pytest.mark.asyncio
async def test_sync_all_connections_continues_past_busy_and_broken(connections):
    busy, broken, healthy = _add_connections(connections, 3)
    orchestrator = StubOrchestrator(busy_ids={busy.id}, broken_ids={broken.id})

    summary = await sync_all_connections(orchestrator, connections)

    assert len(orchestrator.calls) == 3
    assert summary["runs_skipped"] == 1
    assert summary["processing_errors"] == 1
    assert summary["runs_completed"] == 1


@pytest.mark.asyncio
async def test_cleanup_stale_runs_frees_connection(sync_log, connection):
    stale = await sync_log.claim_run(connection.id, USER_ID, "automatic")
    sync_log.runs[stale.id] = stale.model_copy(
        update={"started_at": datetime.now(UTC) - timedelta(hours=2)}
    )

    failed = await cleanup_stale_runs(sync_log, older_than_minutes=30)

    assert failed == 1
    assert sync_log.runs[stale.id].status == "failed"
    assert sync_log.runs[stale.id].error_message == "stale_run"
    # A new run can claim the connection
    await sync_log.claim_run(connection.id, USER_ID, "manual")


@pytest.mark.asyncio
async def test_cleanup_ignores_recent_runs(sync_log, connection):
    await sync_log.claim_run(connection.id, USER_ID, "manual")

    assert await cleanup_stale_runs(sync_log, older_than_minutes=30) == 0
