"""
Integration tests for health check endpoints.
"""

import pytest


@pytest.mark.integration
class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_basic_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data

    def test_liveness_probe(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_readiness_pings_redis(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"redis_configured": True, "redis": True, "status": "ready"}

    def test_readiness_without_redis(self, unconfigured_client):
        response = unconfigured_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["redis_configured"] is False

    def test_correlation_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Correlation-ID"] == "req-123"


@pytest.mark.integration
class TestOpenAPIEndpoints:
    def test_openapi_json(self, client):
        response = client.get("/openapi.json")

        assert response.status_code == 200
        paths = response.json()["paths"]
        assert "/mcp/connect" in paths
        assert "/mcp/oauth/callback" in paths
