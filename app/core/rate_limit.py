"""Rate limiting middleware for the HTTP pipeline.

This module wires the ``RateLimiter`` service into Starlette/FastAPI.

Behavior:
- Runs before route handlers, for every request.
- Blocked requests get a 429 JSON response with ``Retry-After`` and the
  handler is never invoked.
- Admitted requests get ``X-RateLimit-Limit``, ``X-RateLimit-Remaining`` and
  ``X-RateLimit-Reset`` headers once the handler has produced a response.
- Store outages fail open inside the limiter, so the middleware itself never
  turns an infrastructure problem into an error response.
"""

from __future__ import annotations

import logging

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from app.adapters.rate_limit.base import AbstractRateLimitStore, Allow, Blocked, RateLimitPolicy
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.redis_store import RedisRateLimitStore
from app.adapters.redis_client import get_redis_client
from app.core.config import settings
from app.services.rate_limiter import UNKNOWN_IP, RateLimiter

logger = logging.getLogger(__name__)


_limiter: RateLimiter | None = None
_limiter_config: tuple | None = None


def _current_config() -> tuple:
    rl = settings.rate_limit
    return (
        settings.app.rate_limit_backend,
        rl.max_attempts,
        rl.decay_minutes,
        rl.block_minutes,
        tuple((p.prefix, p.max_attempts, p.decay_minutes, p.block_minutes) for p in rl.path_policies),
        tuple(rl.skip_patterns),
        rl.key_prefix,
    )


def build_store(backend: str) -> AbstractRateLimitStore:
    if backend == "memory":
        return InMemoryRateLimitStore()
    return RedisRateLimitStore(get_redis_client())


def build_rate_limiter(store: AbstractRateLimitStore | None = None) -> RateLimiter:
    """Build a limiter from current settings.

    Args:
        store: Optional store to use instead of the configured backend.
    """
    rl = settings.rate_limit
    return RateLimiter(
        store or build_store(settings.app.rate_limit_backend),
        default_policy=RateLimitPolicy(
            max_attempts=rl.max_attempts,
            decay_minutes=rl.decay_minutes,
            block_minutes=rl.block_minutes,
        ),
        path_policies=rl.path_policies,
        skip_patterns=rl.skip_patterns,
        key_prefix=rl.key_prefix,
    )


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide rate limiter.

    The instance is cached in-module. If the relevant settings change
    (primarily in tests), the limiter is rebuilt.
    """

    global _limiter, _limiter_config

    config = _current_config()
    if _limiter is None or (_limiter_config is not None and _limiter_config != config):
        _limiter = build_rate_limiter()
        _limiter_config = config

    return _limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    """Install an explicit limiter (e.g. over a test store), or reset with None.

    An installed limiter is kept regardless of later settings changes.
    """

    global _limiter, _limiter_config

    _limiter = limiter
    _limiter_config = None


def get_client_ip(request: Request) -> str:
    """Resolve the client IP used in rate limit keys."""
    if settings.app.trust_proxy_headers:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_IP


def build_blocked_response(decision: Blocked) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "code": status.HTTP_429_TOO_MANY_REQUESTS,
            "message": settings.rate_limit.blocked_message,
            "data": {"retry_after": decision.retry_after},
        },
        headers={"Retry-After": str(decision.retry_after)},
    )


def apply_rate_limit_headers(response: Response, decision: Allow) -> Response:
    if settings.app.rate_limit_include_headers and decision.has_quota:
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        response.headers["X-RateLimit-Reset"] = str(decision.reset_at)
    return response


async def rate_limit_middleware(request: Request, call_next) -> Response:
    """HTTP middleware enforcing per-IP, per-route rate limits.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        A 429 response when the request is blocked, otherwise the handler's
        response decorated with rate limit headers.
    """

    if not settings.app.rate_limit_enabled:
        return await call_next(request)

    decision = await get_rate_limiter().admit(
        get_client_ip(request),
        request.method,
        request.url.path,
    )

    if isinstance(decision, Blocked):
        return build_blocked_response(decision)

    response: Response = await call_next(request)
    return apply_rate_limit_headers(response, decision)
