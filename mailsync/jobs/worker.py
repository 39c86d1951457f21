"""
One-shot worker entrypoint for external cron.

    python -m mailsync.jobs.worker gmail_sync
    python -m mailsync.jobs.worker stale_sync_cleanup

The job name comes from argv, then WORKER_JOB, defaulting to gmail_sync.
A failed job exits non-zero so the scheduler can alert on it.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from mailsync.config import settings
from mailsync.infrastructure.observability.logging import get_logger, setup_logging
from mailsync.jobs.gmail_sync_job import run_gmail_sync_job, run_stale_sync_cleanup_job

logger = get_logger(__name__)

DEFAULT_JOB = "gmail_sync"

JobCoroutine = Callable[[], Awaitable[None]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "gmail_sync": run_gmail_sync_job,
    "stale_sync_cleanup": run_stale_sync_cleanup_job,
}


def _resolve_job_name(argv: list[str] | None = None) -> str:
    args = sys.argv[1:] if argv is None else argv
    raw = args[0] if args else os.getenv("WORKER_JOB", DEFAULT_JOB)
    return raw.strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    name = (job_name or _resolve_job_name()).strip().lower()
    job = JOB_REGISTRY.get(name)
    if job is None:
        raise ValueError(
            f"Unknown worker job '{name}'. Available jobs: {', '.join(sorted(JOB_REGISTRY))}"
        )

    logger.info("Worker job starting", job=name)
    await job()
    logger.info("Worker job finished", job=name)


def main() -> None:
    setup_logging(log_level=settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    try:
        asyncio.run(run_worker(job_name))
    except Exception as e:
        logger.error("Worker job failed", job=job_name, error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    main()
