"""In-memory fixed-window rate limit store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from subtrack.adapters.rate_limit.base import AbstractRateLimitStore, RateLimitRecord

logger = logging.getLogger(__name__)


@dataclass
class _WindowState:
    total_hits: int
    reset_time: float


class InMemoryRateLimitStore(AbstractRateLimitStore):
    """Counter store keeping one fixed window per key in a dict.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits. Use the MongoDB store for shared limits.
    """

    def __init__(
        self,
        *,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            window_seconds: Size of the fixed window in seconds.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If window_seconds is invalid.
        """
        super().__init__(window_seconds=window_seconds)
        self._clock = clock
        self._lock = threading.RLock()
        self._state_by_key: dict[str, _WindowState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._state_by_key)

    def increment(self, key: str) -> RateLimitRecord:
        self._validate_key(key)
        now = self._clock()

        with self._lock:
            state = self._state_by_key.get(key)
            if state is None or now >= state.reset_time:
                state = _WindowState(total_hits=1, reset_time=now + self._window_seconds)
                self._state_by_key[key] = state
            else:
                state.total_hits += 1
            return RateLimitRecord(total_hits=state.total_hits, reset_time=state.reset_time)

    def decrement(self, key: str) -> None:
        now = self._clock()
        with self._lock:
            state = self._state_by_key.get(key)
            if state is None or now >= state.reset_time:
                return
            if state.total_hits > 0:
                state.total_hits -= 1

    def reset_key(self, key: str) -> None:
        with self._lock:
            self._state_by_key.pop(key, None)

    def get(self, key: str) -> RateLimitRecord | None:
        now = self._clock()
        with self._lock:
            state = self._state_by_key.get(key)
            if state is None:
                return None
            if now >= state.reset_time:
                del self._state_by_key[key]
                return None
            return RateLimitRecord(total_hits=state.total_hits, reset_time=state.reset_time)

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired_keys = [k for k, s in self._state_by_key.items() if s.reset_time <= now]
            for key in expired_keys:
                del self._state_by_key[key]

        if expired_keys:
            logger.debug("rate_limit.cleanup", extra={"removed": len(expired_keys)})
        return len(expired_keys)
