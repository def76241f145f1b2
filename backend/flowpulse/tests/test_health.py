"""Tests for health check endpoints."""

from unittest.mock import MagicMock, patch


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    def test_health_basic(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_health_live(self, client):
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_health_ready_all_healthy(self, client):
        """All dependencies reachable, two workers answering."""
        with (
            patch("redis.from_url") as mock_redis_from_url,
            patch("flowpulse.celery_app.celery_app") as mock_celery,
        ):
            mock_redis_from_url.return_value = MagicMock()
            mock_inspect = MagicMock()
            mock_inspect.ping.return_value = {
                "celery@worker1": {"ok": "pong"},
                "celery@worker2": {"ok": "pong"},
            }
            mock_celery.control.inspect.return_value = mock_inspect

            response = client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["dependencies"]["database"]["status"] == "healthy"
        assert data["dependencies"]["redis"]["status"] == "healthy"
        assert data["dependencies"]["celery"]["workers"] == 2

    def test_health_ready_redis_unhealthy(self, client):
        """Redis backs the scheduler lease, so losing it is fatal."""
        with (
            patch("redis.from_url") as mock_redis_from_url,
            patch("flowpulse.celery_app.celery_app") as mock_celery,
        ):
            mock_redis_from_url.side_effect = Exception("Connection refused")
            mock_celery.control.inspect.return_value.ping.return_value = None

            response = client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert "Connection refused" in data["dependencies"]["redis"]["error"]

    def test_health_ready_no_celery_workers(self, client):
        with (
            patch("redis.from_url") as mock_redis_from_url,
            patch("flowpulse.celery_app.celery_app") as mock_celery,
        ):
            mock_redis_from_url.return_value = MagicMock()
            mock_celery.control.inspect.return_value.ping.return_value = None

            response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["dependencies"]["celery"]["status"] == "degraded"

    def test_health_ready_celery_error(self, client):
        with (
            patch("redis.from_url") as mock_redis_from_url,
            patch("flowpulse.celery_app.celery_app") as mock_celery,
        ):
            mock_redis_from_url.return_value = MagicMock()
            mock_celery.control.inspect.side_effect = Exception("Celery broker unreachable")

            response = client.get("/health/ready")

        assert response.status_code == 200
        celery = response.json()["dependencies"]["celery"]
        assert celery["status"] == "unhealthy"
        assert "Celery broker unreachable" in celery["error"]


class TestRootEndpoint:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Flowpulse Workflow Analytics API"
        assert data["docs"] == "/docs"
