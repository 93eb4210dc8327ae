"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a correlation id: the incoming
``X-Request-ID`` header (configurable via ``LOG_REQUEST_ID_HEADER``) or a fresh
UUID. The id lives in a contextvar for the request's lifetime so log records
emitted by the rate limiter and handlers pick it up automatically.

Usage:
    app.middleware("http")(request_id_middleware)

Register it after the rate limit middleware so it runs outermost and 429
responses carry the id too.
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from app.core.config import settings
from app.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a request id and total duration to every response.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        The downstream response with ``X-Request-ID`` and
        ``X-Request-Duration-ms`` headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
