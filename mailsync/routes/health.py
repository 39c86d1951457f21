# mailsync/routes/health.py
"""
Health check endpoints with database pool monitoring.
"""

import time

from fastapi import APIRouter, Response, status

from mailsync.config import settings
from mailsync.db.pool import db_health_check
from mailsync.services.infrastructure.encryption_service import validate_encryption_config

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "gmail-sync"}


@router.get("/readyz")
async def readyz(response: Response):
    """
    Readiness check: database pool, token encryption and required configuration.
    Responds 503 while any check fails.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    db_health = await db_health_check()
    is_healthy = db_health.get("healthy", False)
    checks["database"] = {"ok": is_healthy, "latency_ms": round((time.time() - t0) * 1000, 1)}
    if "pool_stats" in db_health:
        checks["database"].update(db_health["pool_stats"])
    if not is_healthy:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    overall_ok = overall_ok and is_healthy

    # 2) Token encryption
    encryption_ok = validate_encryption_config()
    checks["encryption"] = {"ok": encryption_ok}
    overall_ok = overall_ok and encryption_ok

    # 3) Configuration
    config_issues = []
    if not settings.SUPABASE_DB_URL:
        config_issues.append("SUPABASE_DB_URL not set")
    if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
        config_issues.append("GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not set")
    if not settings.oauth_state_secret():
        config_issues.append("OAUTH_STATE_SECRET not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    if not overall_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
