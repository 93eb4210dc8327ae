"""Redis-backed rate limit store.

State is shared by every worker and host that points at the same Redis, so
limits hold across processes. Only native single-key commands are used:

- ``GET`` reads the attempt counter
- ``MULTI; INCR; EXPIRE; EXEC`` counts a request and slides the window
- ``SET key 1 EX ttl NX`` raises the block flag (idempotent under races)
- ``TTL`` reports the remaining block time
"""

from __future__ import annotations

import asyncio
import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.adapters.rate_limit.base import AbstractRateLimitStore
from app.core.errors import StoreUnavailableAppError

logger = logging.getLogger(__name__)

_STORE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


def _unavailable(operation: str, exc: BaseException) -> StoreUnavailableAppError:
    return StoreUnavailableAppError(
        code="rate_limit_store_unavailable",
        message=f"Redis {operation} failed: {type(exc).__name__}",
        details={"backend": "redis", "operation": operation},
    )


class RedisRateLimitStore(AbstractRateLimitStore):
    """Rate limit store over a ``redis.asyncio`` client.

    The client should be created with ``decode_responses=True`` and short
    socket timeouts (see ``app.adapters.redis_client``). The store does not
    own the client; closing it is the application's job.
    """

    def __init__(self, client: Redis) -> None:
        self._client = client

    async def get_attempts(self, key: str) -> int:
        try:
            value = await self._client.get(key)
        except _STORE_ERRORS as exc:
            raise _unavailable("get", exc) from exc
        return int(value) if value else 0

    async def increment(self, key: str, ttl_seconds: int) -> int:
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, ttl_seconds)
            count, _ = await pipe.execute()
        except _STORE_ERRORS as exc:
            raise _unavailable("incr", exc) from exc
        return int(count)

    async def block(self, key: str, ttl_seconds: int) -> bool:
        try:
            created = await self._client.set(key, 1, ex=ttl_seconds, nx=True)
        except _STORE_ERRORS as exc:
            raise _unavailable("set", exc) from exc
        return bool(created)

    async def block_ttl(self, key: str) -> int | None:
        try:
            ttl = await self._client.ttl(key)
        except _STORE_ERRORS as exc:
            raise _unavailable("ttl", exc) from exc
        # Redis reports -2 for a missing key and -1 for a key without expiry.
        if ttl is None or ttl == -2:
            return None
        return int(ttl)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except _STORE_ERRORS as exc:
            logger.warning(
                "rate_limit.store_ping_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)[:200]},
            )
            return False
