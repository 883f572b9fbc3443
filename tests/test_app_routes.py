"""Tests for the application routes built by the app factory."""

from __future__ import annotations

from unittest.mock import patch

from fastapi.testclient import TestClient

from subtrack.core.app_factory import create_app
from subtrack.core.config import settings
from subtrack.core.rate_limit import auth_limiter, general_limiter

client = TestClient(create_app())


class TestHealth:
    def test_liveness(self) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_health_is_not_rate_limited(self) -> None:
        for _ in range(150):
            response = client.get("/health")

        assert response.status_code == 200
        assert "RateLimit-Limit" not in response.headers

    def test_readiness_with_memory_backend(self) -> None:
        response = client.get("/health/ready")

        assert response.status_code == 200

    def test_readiness_reports_unreachable_mongo(self, monkeypatch) -> None:
        monkeypatch.setattr(settings.app, "rate_limit_backend", "mongo")

        with patch("subtrack.api.routes.health.ping_mongo", return_value=False):
            response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json() == {"status": "unavailable"}

    def test_readiness_with_reachable_mongo(self, monkeypatch) -> None:
        monkeypatch.setattr(settings.app, "rate_limit_backend", "mongo")

        with patch("subtrack.api.routes.health.ping_mongo", return_value=True):
            response = client.get("/health/ready")

        assert response.status_code == 200


class TestRateLimitStatus:
    def test_reports_every_policy(self) -> None:
        response = client.get("/api/v1/rate-limits")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        by_policy = {entry["policy"]: entry for entry in body["data"]}
        assert set(by_policy) == {"general", "auth", "subscription", "user"}
        assert by_policy["auth"]["limit"] == 5
        assert by_policy["subscription"]["limit"] == 200
        assert by_policy["user"]["window_seconds"] == 900

    def test_counts_only_the_general_policy(self) -> None:
        client.get("/api/v1/rate-limits")
        response = client.get("/api/v1/rate-limits")

        by_policy = {entry["policy"]: entry for entry in response.json()["data"]}
        assert by_policy["general"]["used"] == 2
        assert by_policy["general"]["remaining"] == 98
        assert by_policy["auth"]["used"] == 0
        assert by_policy["auth"]["reset_at"] is None

    def test_reflects_usage_of_other_route_classes(self) -> None:
        auth_limiter.store.increment("ip:testclient")
        auth_limiter.store.increment("ip:testclient")

        response = client.get("/api/v1/rate-limits")

        by_policy = {entry["policy"]: entry for entry in response.json()["data"]}
        assert by_policy["auth"]["used"] == 2
        assert by_policy["auth"]["remaining"] == 3
        assert by_policy["auth"]["reset_at"] is not None

    def test_status_route_is_rate_limited(self) -> None:
        for _ in range(general_limiter.config.max_requests):
            client.get("/api/v1/rate-limits")

        response = client.get("/api/v1/rate-limits")

        assert response.status_code == 429
        assert response.json()["error"] == "Too many requests from this IP, please try again later."


class TestOpenAPI:
    def test_rate_limited_operations_document_headers(self) -> None:
        schema = client.get("/openapi.json").json()

        assert "RateLimit-Remaining" in schema["components"]["headers"]
        operation = schema["paths"]["/api/v1/rate-limits"]["get"]
        assert "Retry-After" in operation["responses"]["429"]["headers"]
        assert "RateLimit-Limit" in operation["responses"]["200"]["headers"]

    def test_health_has_no_rate_limit_headers(self) -> None:
        schema = client.get("/openapi.json").json()

        operation = schema["paths"]["/health"]["get"]
        assert "headers" not in operation["responses"]["200"]
