"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- RateLimitExceeded → 429 with the fixed rejection body clients rely on
- AppError subclasses → 400 with a stable error code
- Unexpected Exception → generic 500 (safety net)
- Error responses include request_id for distributed tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from subtrack.core.errors import AppError
from subtrack.core.logging import get_request_id
from subtrack.core.rate_limit import RateLimitExceeded

logger = logging.getLogger(__name__)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render a rejected request.

    Body shape is fixed::

        {"success": false, "error": "<policy message>", "retryAfter": "15 minutes"}

    Args:
        request: FastAPI request object.
        exc: RateLimitExceeded raised by a policy dependency.

    Returns:
        JSONResponse with HTTP 429 and RateLimit-*/Retry-After headers.
    """
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": exc.config.message,
            "retryAfter": exc.config.retry_after_text,
        },
        headers=exc.headers or None,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Domain errors such as ValidationAppError are client faults (400).

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 400

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        }
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error_content},
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic message,
    so no stack traces or driver messages leak to clients.

    Args:
        request: FastAPI request object.
        exc: Exception instance (unexpected).

    Returns:
        JSONResponse with generic error (no implementation details leaked).
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        }
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            },
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Order matters: specific handlers registered before general fallback.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(RateLimitExceeded)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
