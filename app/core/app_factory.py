from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) to
improve testability. The blog API routers mount behind the same middleware
stack; this service ships only the health endpoints.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.redis_client import close_redis_client
from app.api.routes import health_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.rate_limit import get_rate_limiter, rate_limit_middleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    limiter = get_rate_limiter()
    logger.info(
        "app.startup",
        extra={
            "app_env": settings.app_env,
            "rate_limit_enabled": settings.app.rate_limit_enabled,
            "rate_limit_backend": settings.app.rate_limit_backend,
        },
    )
    try:
        yield
    finally:
        await limiter.store.close()
        await close_redis_client()
        logger.info("app.shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Blog API Gateway",
        description=(
            "Front door for the blog API. Applies per-IP, per-route rate limits "
            "backed by Redis, with stricter policies on login and registration."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware: the last one registered runs first, so request ids wrap
    # rate limiting and 429 responses carry X-Request-ID as well.
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router)

    return app
