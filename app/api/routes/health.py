from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.rate_limit import get_rate_limiter

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Returns a static status without touching Redis, so load balancers keep
    routing traffic while the limiter is failing open.
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check() -> JSONResponse:
    """Readiness check reporting whether the rate limit store is reachable."""

    if settings.app.rate_limit_backend != "redis":
        return JSONResponse({"status": "ok", "redis": "disabled"})

    if await get_rate_limiter().store.ping():
        return JSONResponse({"status": "ok", "redis": "up"})
    return JSONResponse({"status": "degraded", "redis": "down"}, status_code=503)
