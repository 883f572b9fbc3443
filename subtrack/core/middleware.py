"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a request ID so rate limit decisions and
store failures logged during the request can be correlated:
- Accepts the incoming request-id header or generates a UUID
- Stores it in contextvars for the whole request lifecycle
- Echoes it, plus the total duration, in response headers
- Clears the context afterwards

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from subtrack.core.config import settings
from subtrack.core.logging import clear_request_id, set_request_id

DURATION_HEADER = "X-Request-Duration-ms"


async def request_id_middleware(request: Request, call_next) -> Response:
    """Tag the request with a correlation id and time it.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with the request-id header (name
            from LOG_REQUEST_ID_HEADER) and X-Request-Duration-ms added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault(DURATION_HEADER, f"{(time.perf_counter() - start) * 1000:.2f}")
    return response
