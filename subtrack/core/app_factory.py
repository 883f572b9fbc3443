"""Application factory for FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) so tests can build isolated instances.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from subtrack.api.routes import health_router, rate_limits_router
from subtrack.core.config import settings
from subtrack.core.exception_handlers import setup_exception_handlers
from subtrack.core.logging import configure_logging
from subtrack.core.middleware import request_id_middleware
from subtrack.core.mongo import close_mongo_client
from subtrack.core.openapi import apply_openapi_customizations
from subtrack.core.rate_limit import get_policies, reset_policy_stores, run_periodic_cleanup

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the expired-record sweep and release the Mongo client on shutdown."""

    cleanup_task: asyncio.Task | None = None
    interval = settings.app.rate_limit_cleanup_interval_seconds
    if settings.app.rate_limit_enabled and interval > 0:
        cleanup_task = asyncio.create_task(run_periodic_cleanup(get_policies(), interval))
        logger.info("rate_limit.cleanup_scheduled", extra={"interval_s": interval})

    try:
        yield
    finally:
        if cleanup_task is not None:
            cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup_task
        reset_policy_stores()
        close_mongo_client()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Route groups plug a policy in as a router dependency, e.g.
    ``APIRouter(dependencies=[Depends(auth_limiter)])``.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Subscription Tracker API",
        description=(
            "Tracks personal subscriptions. Every route class is throttled per "
            "client address by a fixed-window rate limit shared across server "
            "processes through MongoDB."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(rate_limits_router, prefix="/api/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
