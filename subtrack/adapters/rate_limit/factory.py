"""Factory for creating rate limit store instances."""

from __future__ import annotations

from subtrack.adapters.rate_limit.base import AbstractRateLimitStore
from subtrack.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from subtrack.adapters.rate_limit.mongo import MongoRateLimitStore
from subtrack.core.config import settings
from subtrack.core.errors import ValidationAppError
from subtrack.core.mongo import get_mongo_database


def create_rate_limit_store(
    *,
    collection: str,
    window_seconds: int,
    backend: str | None = None,
) -> AbstractRateLimitStore:
    """Instantiate the counter store for one policy.

    Reads the backend from ``settings.app.rate_limit_backend`` unless one is
    passed explicitly. Mongo stores get their indexes ensured on creation.

    Args:
        collection: Collection (keyspace) dedicated to the policy.
        window_seconds: Size of the policy's fixed window.
        backend: Optional backend override ("mongo" or "memory").

    Returns:
        AbstractRateLimitStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend is unknown.
    """
    backend = (backend or settings.app.rate_limit_backend).lower()

    if backend == "mongo":
        store = MongoRateLimitStore(
            get_mongo_database()[collection],
            window_seconds=window_seconds,
        )
        store.ensure_indexes()
        return store

    if backend == "memory":
        return InMemoryRateLimitStore(window_seconds=window_seconds)

    raise ValidationAppError(
        code="rate_limit_unknown_backend",
        message=(
            f"Unknown rate limit backend: '{backend}'. Supported backends: mongo, memory"
        ),
    )
