"""Shared ``redis.asyncio`` client.

One connection pool per process, created lazily from settings. Creation never
touches the network; connection failures surface on the first command, where
callers decide how to degrade.

``get_redis_lock()`` is the public entry point for code that needs a
distributed lock, for example around cache rebuilds or scheduled jobs that
must run on one worker only. Nothing in the request path takes a lock, so the
app itself never calls it.
"""

from __future__ import annotations

import logging
from typing import Optional

from redis.asyncio import Redis

from app.adapters.lock.redis_lock import RedisLock
from app.core.config import RedisSettings, settings

logger = logging.getLogger(__name__)

_redis_client: Optional[Redis] = None


def create_redis_client(redis_settings: RedisSettings | None = None) -> Redis:
    """Build a client with short timeouts so outages fail fast."""
    cfg = redis_settings or settings.redis
    return Redis.from_url(
        cfg.url,
        decode_responses=True,
        socket_timeout=cfg.socket_timeout,
        socket_connect_timeout=cfg.connect_timeout,
    )


def get_redis_client() -> Redis:
    """Get or create the process-wide Redis client."""
    global _redis_client

    if _redis_client is None:
        _redis_client = create_redis_client()
        logger.info("redis.client_created")
    return _redis_client


async def close_redis_client() -> None:
    """Close the shared client, if one was created."""
    global _redis_client

    if _redis_client is None:
        return
    client, _redis_client = _redis_client, None
    await client.aclose()
    logger.info("redis.client_closed")


def get_redis_lock() -> RedisLock:
    """Return a lock helper bound to the shared client and configured prefix."""
    return RedisLock(get_redis_client(), prefix=settings.redis.lock_prefix)
