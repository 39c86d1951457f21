"""
Tests for health check endpoints.
"""

from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from mailsync.main import app

client = TestClient(app)

HEALTHY_DB = {"healthy": True, "pool_stats": {"pool_size": 3, "pool_available": 3}}


def test_healthz_endpoint():
    """Test the basic health check endpoint."""
    response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"


def test_readyz_endpoint_all_checks_pass():
    """Test readiness endpoint when all dependencies are ready."""
    with (
        patch("mailsync.routes.health.db_health_check", AsyncMock(return_value=HEALTHY_DB)),
        patch("mailsync.routes.health.validate_encryption_config", return_value=True),
        patch("mailsync.routes.health.settings.SUPABASE_DB_URL", "postgresql://localhost/test"),
    ):
        response = client.get("/readyz")

    assert response.status_code == 200
    data = response.json()
    assert data["overall_ok"] is True

    checks = data["checks"]
    assert checks["database"]["ok"] is True
    assert checks["database"]["pool_size"] == 3
    assert checks["encryption"]["ok"] is True
    assert checks["configuration"]["ok"] is True


def test_readyz_endpoint_database_unhealthy():
    """Test readiness endpoint when the database pool is down."""
    unhealthy = {"healthy": False, "error": "Pool not initialized"}
    with (
        patch("mailsync.routes.health.db_health_check", AsyncMock(return_value=unhealthy)),
        patch("mailsync.routes.health.validate_encryption_config", return_value=True),
        patch("mailsync.routes.health.settings.SUPABASE_DB_URL", "postgresql://localhost/test"),
    ):
        response = client.get("/readyz")

    assert response.status_code == 503
    data = response.json()
    assert data["overall_ok"] is False
    assert data["checks"]["database"]["error"] == "Pool not initialized"


def test_readyz_endpoint_reports_missing_configuration():
    with (
        patch("mailsync.routes.health.db_health_check", AsyncMock(return_value=HEALTHY_DB)),
        patch("mailsync.routes.health.validate_encryption_config", return_value=False),
        patch("mailsync.routes.health.settings.SUPABASE_DB_URL", None),
    ):
        response = client.get("/readyz")

    assert response.status_code == 503
    checks = response.json()["checks"]
    assert checks["encryption"]["ok"] is False
    assert "SUPABASE_DB_URL not set" in checks["configuration"]["issues"]
