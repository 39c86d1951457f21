"""
Structured logging setup for the Gmail sync engine.
Provides JSON-formatted logs with consistent fields for production monitoring.
"""

import logging
import sys

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output for production.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            # Add connection/run context bound by the sync orchestrator
            structlog.contextvars.merge_contextvars,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_sync_summary(
    connection_id: int,
    sync_run_id: int | None,
    status: str,
    emails_processed: int,
    error_count: int,
    duration_ms: float,
    failure_reason: str | None = None,
):
    """Log the terminal outcome of a sync run with consistent fields."""
    logger = get_logger("sync")

    log_data = {
        "connection_id": connection_id,
        "sync_run_id": sync_run_id,
        "status": status,
        "emails_processed": emails_processed,
        "error_count": error_count,
        "duration_ms": round(duration_ms, 2),
    }

    if failure_reason:
        log_data["failure_reason"] = failure_reason

    if status == "failed":
        logger.error("Gmail sync run failed", **log_data)
    else:
        logger.info("Gmail sync run completed", **log_data)
