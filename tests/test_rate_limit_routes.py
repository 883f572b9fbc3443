"""HTTP-level tests for rate limit dependencies and the 429 response."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi import APIRouter, Depends, FastAPI
from fastapi.testclient import TestClient
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

from subtrack.adapters.rate_limit.base import AbstractRateLimitStore
from subtrack.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from subtrack.adapters.rate_limit.mongo import MongoRateLimitStore
from subtrack.core.config import settings
from subtrack.core.exception_handlers import setup_exception_handlers
from subtrack.core.rate_limit import (
    AUTH_POLICY,
    GENERAL_POLICY,
    RateLimitPolicy,
    create_policy,
)


def _build_app(*policies: RateLimitPolicy) -> FastAPI:
    """One route per policy, guarded the way real route groups are."""
    app = FastAPI()
    setup_exception_handlers(app)
    for policy in policies:
        router = APIRouter(dependencies=[Depends(policy)])

        @router.post(f"/{policy.config.name}")
        async def endpoint() -> dict:
            return {"success": True}

        app.include_router(router)
    return app


@pytest.fixture
def auth_policy() -> RateLimitPolicy:
    return create_policy(AUTH_POLICY, InMemoryRateLimitStore(window_seconds=900))


@pytest.fixture
def general_policy() -> RateLimitPolicy:
    return create_policy(GENERAL_POLICY, InMemoryRateLimitStore(window_seconds=900))


@pytest.fixture
def client(auth_policy: RateLimitPolicy, general_policy: RateLimitPolicy) -> TestClient:
    return TestClient(_build_app(auth_policy, general_policy))


class TestRejection:
    def test_sixth_request_gets_429(self, client: TestClient) -> None:
        statuses = [client.post("/auth").status_code for _ in range(6)]

        assert statuses == [200, 200, 200, 200, 200, 429]

    def test_rejection_body_shape(self, client: TestClient) -> None:
        for _ in range(5):
            client.post("/auth")

        response = client.post("/auth")

        assert response.status_code == 429
        assert response.json() == {
            "success": False,
            "error": "Too many authentication attempts from this IP, please try again later.",
            "retryAfter": "15 minutes",
        }

    def test_rejection_headers(self, client: TestClient) -> None:
        for _ in range(5):
            client.post("/auth")

        response = client.post("/auth")

        assert response.headers["RateLimit-Limit"] == "5"
        assert response.headers["RateLimit-Remaining"] == "0"
        assert 0 < int(response.headers["Retry-After"]) <= 900

    def test_rejected_request_does_not_reach_handler(self, auth_policy: RateLimitPolicy) -> None:
        calls = []
        app = FastAPI()
        setup_exception_handlers(app)

        @app.post("/sign-in", dependencies=[Depends(auth_policy)])
        async def sign_in() -> dict:
            calls.append(1)
            return {"success": True}

        client = TestClient(app)
        for _ in range(7):
            client.post("/sign-in")

        assert len(calls) == 5


class TestAllowed:
    def test_allowed_response_carries_headers(self, client: TestClient) -> None:
        response = client.post("/auth")

        assert response.status_code == 200
        assert response.headers["RateLimit-Limit"] == "5"
        assert response.headers["RateLimit-Remaining"] == "4"
        assert 0 < int(response.headers["RateLimit-Reset"]) <= 900
        assert "Retry-After" not in response.headers

    def test_headers_can_be_disabled(self, client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(settings.app, "rate_limit_include_headers", False)

        response = client.post("/auth")

        assert response.status_code == 200
        assert "RateLimit-Limit" not in response.headers

    def test_route_classes_are_independent(self, client: TestClient) -> None:
        for _ in range(6):
            client.post("/auth")

        response = client.post("/general")

        assert response.status_code == 200
        assert response.headers["RateLimit-Limit"] == "100"
        assert response.headers["RateLimit-Remaining"] == "99"

    def test_disabled_rate_limiting_never_counts(
        self, client: TestClient, auth_policy: RateLimitPolicy, monkeypatch
    ) -> None:
        monkeypatch.setattr(settings.app, "rate_limit_enabled", False)

        statuses = {client.post("/auth").status_code for _ in range(10)}

        assert statuses == {200}
        assert auth_policy.store.get("ip:testclient") is None

    def test_store_failure_fails_open(self) -> None:
        store = MagicMock(spec=AbstractRateLimitStore)
        store.increment.side_effect = ConnectionError("store down")
        client = TestClient(_build_app(create_policy(AUTH_POLICY, store)))

        statuses = [client.post("/auth").status_code for _ in range(10)]

        assert statuses == [200] * 10

    def test_contended_mongo_store_never_surfaces_an_error(self) -> None:
        collection = MagicMock(spec=Collection)
        collection.name = "auth_rate_limits"
        collection.find_one_and_update.return_value = None
        collection.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")
        store = MongoRateLimitStore(collection, window_seconds=900)
        client = TestClient(_build_app(create_policy(AUTH_POLICY, store)))

        responses = [client.post("/auth") for _ in range(7)]

        assert [r.status_code for r in responses] == [200] * 7
        assert all(r.json() == {"success": True} for r in responses)
