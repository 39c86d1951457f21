"""
FastAPI application with database pool and HTTP client lifecycle management.
"""

import time
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request

from mailsync.config import settings
from mailsync.db.pool import db_pool
from mailsync.infrastructure.observability.logging import get_logger, setup_logging
from mailsync.routes import gmail_auth, gmail_sync, health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool and the shared Google HTTP client; close both on shutdown."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    await db_pool.initialize()

    app.state.http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    logger.info("All services initialized successfully")

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        await app.state.http_client.aclose()
    except Exception as e:
        logger.error("Error closing HTTP client", error=str(e))
        shutdown_errors.append(f"HTTP client: {e}")

    # Close database pool last (may have active connections)
    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Gmail Sync Engine",
    description="Gmail connection lifecycle and contact sync",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(gmail_auth.router)
app.include_router(gmail_sync.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
