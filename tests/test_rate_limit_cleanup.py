"""Tests for the periodic expired-record sweep and the store factory."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, Mock, patch

import mongomock
import pytest

from subtrack.adapters.rate_limit.base import AbstractRateLimitStore
from subtrack.adapters.rate_limit.factory import create_rate_limit_store
from subtrack.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from subtrack.adapters.rate_limit.mongo import MongoRateLimitStore
from subtrack.core.errors import ValidationAppError
from subtrack.core.rate_limit import AUTH_POLICY, GENERAL_POLICY, create_policy, run_periodic_cleanup


async def _run_briefly(policies, interval: float, duration: float) -> None:
    task = asyncio.create_task(run_periodic_cleanup(policies, interval))
    await asyncio.sleep(duration)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


class TestPeriodicCleanup:
    @pytest.mark.asyncio
    async def test_sweeps_every_policy_store(self) -> None:
        clock = Mock(return_value=1000.0)
        auth_store = InMemoryRateLimitStore(window_seconds=60, clock=clock)
        general_store = InMemoryRateLimitStore(window_seconds=60, clock=clock)
        auth_store.increment("a")
        general_store.increment("b")
        clock.return_value = 2000.0

        policies = [create_policy(AUTH_POLICY, auth_store), create_policy(GENERAL_POLICY, general_store)]
        await _run_briefly(policies, interval=0.01, duration=0.1)

        assert len(auth_store) == 0
        assert len(general_store) == 0

    @pytest.mark.asyncio
    async def test_failing_store_does_not_stop_the_sweep(self) -> None:
        broken = MagicMock(spec=AbstractRateLimitStore)
        broken.cleanup.side_effect = RuntimeError("boom")
        healthy = MagicMock(spec=AbstractRateLimitStore)
        healthy.cleanup.return_value = 0

        policies = [create_policy(AUTH_POLICY, broken), create_policy(GENERAL_POLICY, healthy)]
        await _run_briefly(policies, interval=0.01, duration=0.1)

        assert broken.cleanup.call_count >= 2
        assert healthy.cleanup.call_count >= 2


class TestStoreFactory:
    def test_memory_backend(self) -> None:
        store = create_rate_limit_store(collection="c", window_seconds=60, backend="memory")

        assert isinstance(store, InMemoryRateLimitStore)
        assert store.window_seconds == 60

    def test_mongo_backend_uses_named_collection(self) -> None:
        database = mongomock.MongoClient().db
        with patch(
            "subtrack.adapters.rate_limit.factory.get_mongo_database",
            return_value=database,
        ):
            store = create_rate_limit_store(
                collection="auth_rate_limits", window_seconds=900, backend="mongo"
            )

        assert isinstance(store, MongoRateLimitStore)
        assert store.collection_name == "auth_rate_limits"
        assert "key_unique" in database["auth_rate_limits"].index_information()

    def test_backend_from_settings(self) -> None:
        store = create_rate_limit_store(collection="c", window_seconds=60)

        assert isinstance(store, InMemoryRateLimitStore)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValidationAppError) as excinfo:
            create_rate_limit_store(collection="c", window_seconds=60, backend="redis")

        assert excinfo.value.code == "rate_limit_unknown_backend"
