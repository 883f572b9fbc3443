from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from subtrack.core.config import settings
from subtrack.core.mongo import ping_mongo

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness probe.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check() -> JSONResponse:
    """Readiness probe.

    With the MongoDB rate limit backend, the database must answer a ping.
    Requests are still served while it is down (limits fail open), so this
    only tells orchestrators that enforcement is degraded.
    """

    if settings.app.rate_limit_backend == "mongo":
        if not await run_in_threadpool(ping_mongo):
            return JSONResponse(status_code=503, content={"status": "unavailable"})
    return JSONResponse(status_code=200, content={"status": "ok"})
