"""Rate limit store interfaces.

The policy layer depends on this abstraction (not the concrete implementation)
so storage backends can be swapped (MongoDB, in-memory) without touching the
HTTP layer.

Store contract shared by every implementation:
- ``increment`` never raises for storage failures; it returns a record with
  ``degraded=True`` so the caller can allow the request.
- ``decrement``, ``reset_key``, ``get`` and ``cleanup`` are best effort and
  swallow storage failures after logging them.
- A record whose ``reset_time`` has passed is treated as absent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitRecord:
    """Counter state for one key in its current window.

    Attributes:
        total_hits: Requests counted in the current window.
        reset_time: UNIX epoch seconds when the window expires.
        degraded: True when the store failed and this is the fail-open fallback.
    """

    total_hits: int
    reset_time: float
    degraded: bool = False


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a policy check against a store.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window resets.
        retry_after_seconds: Suggested wait time in seconds when blocked.
        total_hits: Count returned by the store, including this request.
        degraded: Whether the decision was made on a fail-open fallback.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: int | None
    total_hits: int
    degraded: bool = False


class AbstractRateLimitStore(ABC):
    """Interface for fixed-window counter stores."""

    def __init__(self, *, window_seconds: int) -> None:
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")
        self._window_seconds = window_seconds

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    def fallback_record(self, now: float) -> RateLimitRecord:
        """Fail-open value returned when the store cannot count a request."""
        return RateLimitRecord(
            total_hits=1,
            reset_time=now + self._window_seconds,
            degraded=True,
        )

    @abstractmethod
    def increment(self, key: str) -> RateLimitRecord:
        """Count one request for ``key`` and return the updated record.

        Args:
            key: Non-empty identity, already namespaced by the caller.

        Returns:
            RateLimitRecord after this request was applied, or the fail-open
            fallback when the store is unavailable.

        Raises:
            ValueError: If key is empty.
        """
        raise NotImplementedError

    @abstractmethod
    def decrement(self, key: str) -> None:
        """Refund one counted request for a live record; no-op otherwise."""
        raise NotImplementedError

    @abstractmethod
    def reset_key(self, key: str) -> None:
        """Delete the record for ``key`` regardless of expiry."""
        raise NotImplementedError

    @abstractmethod
    def get(self, key: str) -> RateLimitRecord | None:
        """Return the live record for ``key`` or None when absent/expired."""
        raise NotImplementedError

    @abstractmethod
    def cleanup(self) -> int:
        """Delete every expired record and return how many were removed."""
        raise NotImplementedError

    @staticmethod
    def _validate_key(key: str) -> None:
        if not key:
            raise ValueError("key must be a non-empty string")
