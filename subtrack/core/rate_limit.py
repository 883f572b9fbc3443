"""Rate limiting dependencies for FastAPI routes.

This module wires the rate limit stores into the HTTP layer.

Design goals:
- Minimal coupling: routers depend on a dependency callable only.
- One policy per route class (general, auth, subscription, user management),
  each with its own window, ceiling, message and store keyspace, so the same
  client is counted independently per class.
- Fail-open: a degraded store allows the request; the only rejection is a
  ceiling being exceeded.

Rate limiting strategy:
- Fixed window per client network address.
- Counters live in the configured store (MongoDB collections by default), so
  limits hold across worker processes and restarts.
"""

import asyncio
import hashlib
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool

from subtrack.adapters.rate_limit.base import (
    AbstractRateLimitStore,
    RateLimitRecord,
    RateLimitResult,
)
from subtrack.adapters.rate_limit.factory import create_rate_limit_store
from subtrack.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicyConfig:
    """Parameters of one route-class policy.

    Attributes:
        name: Route class name, used in logs and the status endpoint.
        window_seconds: Fixed window length.
        max_requests: Requests allowed per client per window.
        message: Error text returned with HTTP 429.
        collection: Store keyspace owned by this policy.
    """

    name: str
    window_seconds: int
    max_requests: int
    message: str
    collection: str

    @property
    def retry_after_text(self) -> str:
        return humanize_window(self.window_seconds)


FIFTEEN_MINUTES = 15 * 60

GENERAL_POLICY = RateLimitPolicyConfig(
    name="general",
    window_seconds=FIFTEEN_MINUTES,
    max_requests=100,
    message="Too many requests from this IP, please try again later.",
    collection="general_rate_limits",
)

# Deliberately strict to slow down credential guessing.
AUTH_POLICY = RateLimitPolicyConfig(
    name="auth",
    window_seconds=FIFTEEN_MINUTES,
    max_requests=5,
    message="Too many authentication attempts from this IP, please try again later.",
    collection="auth_rate_limits",
)

SUBSCRIPTION_POLICY = RateLimitPolicyConfig(
    name="subscription",
    window_seconds=FIFTEEN_MINUTES,
    max_requests=200,
    message="Too many subscription requests from this IP, please try again later.",
    collection="subscription_rate_limits",
)

USER_POLICY = RateLimitPolicyConfig(
    name="user",
    window_seconds=FIFTEEN_MINUTES,
    max_requests=50,
    message="Too many user management requests from this IP, please try again later.",
    collection="user_rate_limits",
)


def humanize_window(seconds: int) -> str:
    """Render a window length the way clients see it in ``retryAfter``.

    >>> humanize_window(900)
    '15 minutes'
    """

    for unit_seconds, unit in ((3600, "hour"), (60, "minute")):
        if seconds >= unit_seconds and seconds % unit_seconds == 0:
            count = seconds // unit_seconds
            return f"{count} {unit}" if count == 1 else f"{count} {unit}s"
    return "1 second" if seconds == 1 else f"{seconds} seconds"


class RateLimitExceeded(Exception):
    """Signals a rejected request to the 429 handler.

    Raised only by the dependency to short-circuit FastAPI's pipeline; the
    store and ``RateLimitPolicy.check`` report the decision as a value.
    """

    def __init__(
        self,
        config: RateLimitPolicyConfig,
        result: RateLimitResult,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(config.message)
        self.config = config
        self.result = result
        self.headers = headers or {}


def build_rate_limit_headers(result: RateLimitResult, *, now: float | None = None) -> dict[str, str]:
    """Standard RateLimit-* disclosure headers (plus Retry-After when blocked)."""

    now = time.time() if now is None else now
    reset_in = max(0, int(math.ceil(result.reset_at - now)))
    headers = {
        "RateLimit-Limit": str(result.limit),
        "RateLimit-Remaining": str(result.remaining),
        "RateLimit-Reset": str(reset_in),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after_seconds or 0)
    return headers


def build_rate_limit_key(request: Request) -> str:
    """Build the limiter key for the current request.

    Args:
        request: FastAPI request.

    Returns:
        str: Client-address key; the policy's keyspace provides the namespace.
    """

    if settings.app.rate_limit_trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return f"ip:{first_hop}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing client addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class RateLimitPolicy:
    """A route-class policy bound to its counter store.

    Instances are FastAPI dependencies::

        router = APIRouter(dependencies=[Depends(subscription_limiter)])
    """

    def __init__(
        self,
        config: RateLimitPolicyConfig,
        store: AbstractRateLimitStore | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if config.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.config = config
        self._store = store
        self._store_lock = threading.Lock()
        self._clock = clock

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"RateLimitPolicy(name={self.config.name!r}, max_requests={self.config.max_requests}, "
            f"window_seconds={self.config.window_seconds})"
        )

    @property
    def store(self) -> AbstractRateLimitStore:
        """Store for this policy, built from settings on first use."""
        if self._store is None:
            with self._store_lock:
                if self._store is None:
                    self._store = create_rate_limit_store(
                        collection=self.config.collection,
                        window_seconds=self.config.window_seconds,
                    )
        return self._store

    def reset_store(self) -> None:
        """Forget the cached store so the next use rebuilds it from settings."""
        with self._store_lock:
            self._store = None

    def _increment(self, key: str) -> RateLimitRecord:
        return self.store.increment(key)

    async def check(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and decide whether it may proceed.

        Store calls run in the threadpool so a slow database never stalls the
        event loop. Failures of any kind degrade to an allowed result.

        Args:
            key: Client identity key.

        Returns:
            RateLimitResult describing the decision.

        Raises:
            ValueError: If key is empty.
        """

        if not key:
            raise ValueError("key must be a non-empty string")

        limit = self.config.max_requests
        try:
            record = await run_in_threadpool(self._increment, key)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "rate_limit.check_failed",
                extra={
                    "policy": self.config.name,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            now = self._clock()
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=limit - 1,
                reset_at=now + self.config.window_seconds,
                retry_after_seconds=None,
                total_hits=1,
                degraded=True,
            )

        remaining = max(0, limit - record.total_hits)
        if record.total_hits <= limit:
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=remaining,
                reset_at=record.reset_time,
                retry_after_seconds=None,
                total_hits=record.total_hits,
                degraded=record.degraded,
            )

        retry_after = max(0, int(math.ceil(record.reset_time - self._clock())))
        return RateLimitResult(
            allowed=False,
            limit=limit,
            remaining=0,
            reset_at=record.reset_time,
            retry_after_seconds=retry_after,
            total_hits=record.total_hits,
            degraded=record.degraded,
        )

    async def peek(self, key: str) -> RateLimitRecord | None:
        """Current record for ``key`` without counting a request."""
        return await run_in_threadpool(lambda: self.store.get(key))

    async def __call__(self, request: Request, response: Response) -> None:
        """FastAPI dependency enforcing this policy.

        Raises:
            RateLimitExceeded: When the client is over the policy ceiling.
        """

        if not settings.app.rate_limit_enabled:
            return

        key = build_rate_limit_key(request)
        result = await self.check(key)
        log_extra = {
            "policy": self.config.name,
            "key_hash": _hash_limiter_key(key),
            "limit": result.limit,
            "remaining": result.remaining,
            "total_hits": result.total_hits,
            "window_s": self.config.window_seconds,
            "degraded": result.degraded,
        }

        if result.allowed:
            logger.info("rate_limit.allowed", extra=log_extra)
            if settings.app.rate_limit_include_headers:
                response.headers.update(build_rate_limit_headers(result, now=self._clock()))
            return

        logger.warning(
            "rate_limit.exceeded",
            extra={**log_extra, "retry_after_s": result.retry_after_seconds},
        )
        headers = None
        if settings.app.rate_limit_include_headers:
            headers = build_rate_limit_headers(result, now=self._clock())
        raise RateLimitExceeded(self.config, result, headers)


def create_policy(
    config: RateLimitPolicyConfig,
    store: AbstractRateLimitStore | None = None,
) -> RateLimitPolicy:
    """Build a policy from its configuration.

    Args:
        config: Policy parameters.
        store: Optional store; built lazily from settings when omitted.

    Returns:
        RateLimitPolicy usable as a FastAPI dependency.
    """

    return RateLimitPolicy(config, store)


general_limiter = create_policy(GENERAL_POLICY)
auth_limiter = create_policy(AUTH_POLICY)
subscription_limiter = create_policy(SUBSCRIPTION_POLICY)
user_limiter = create_policy(USER_POLICY)


def get_policies() -> tuple[RateLimitPolicy, ...]:
    """All route-class policies of the application."""
    return (general_limiter, auth_limiter, subscription_limiter, user_limiter)


def reset_policy_stores() -> None:
    """Drop cached stores of every policy (settings changes, tests)."""
    for policy in get_policies():
        policy.reset_store()


async def run_periodic_cleanup(
    policies: Iterable[RateLimitPolicy],
    interval_seconds: float,
) -> None:
    """Sweep expired records from every policy store until cancelled.

    Safety net for stores without native expiry; the MongoDB TTL monitor
    normally gets there first.
    """

    policies = tuple(policies)
    while True:
        await asyncio.sleep(interval_seconds)
        for policy in policies:
            try:
                removed = await run_in_threadpool(lambda p=policy: p.store.cleanup())
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "rate_limit.cleanup_failed",
                    extra={"policy": policy.config.name, "error_type": type(exc).__name__},
                )
                continue
            if removed:
                logger.info(
                    "rate_limit.cleanup_completed",
                    extra={"policy": policy.config.name, "removed": removed},
                )
