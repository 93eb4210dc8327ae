"""Redis distributed lock.

Built on redis-py's ``Lock``: the key ``{prefix}{name}`` holds an owner token
set with ``SET NX PX`` so it always expires even if its holder dies, and the
library's Lua scripts compare the token before releasing or extending, so one
holder can never drop or prolong another holder's lock.

The token is handed back to the caller instead of living on a ``Lock``
object, which lets a different task (or request) release what another one
acquired.

Redis failures are logged and reported as "not acquired" / ``False``; callers
treat an unreachable Redis like a contended lock.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import secrets
from typing import Any, Awaitable, Callable

from redis.asyncio import Redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockNotOwnedError, RedisError

logger = logging.getLogger(__name__)

_LOCK_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


def generate_token() -> str:
    """Return a token unique to this process, task and call."""
    try:
        task_id = id(asyncio.current_task())
    except RuntimeError:
        # no running event loop
        task_id = 0
    return f"{os.getpid()}:{task_id}:{secrets.token_hex(8)}"


class RedisLock:
    """Acquire, extend and release named locks.

    Args:
        client: ``redis.asyncio`` client.
        prefix: Namespace prepended to every lock name.
    """

    def __init__(self, client: Redis, *, prefix: str = "lock:") -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, name: str) -> str:
        return f"{self._prefix}{name}"

    def _lock(self, name: str, ttl: float | None = None, *, token: str | None = None, **kwargs: Any) -> Lock:
        lock = self._client.lock(self._key(name), timeout=ttl, thread_local=False, **kwargs)
        if token is not None:
            lock.local.token = token.encode("utf-8")
        return lock

    def _log_error(self, event: str, name: str, exc: BaseException) -> None:
        logger.error(
            event,
            extra={"lock_key": self._key(name), "error_type": type(exc).__name__, "error_msg": str(exc)[:200]},
        )

    async def acquire(
        self,
        name: str,
        ttl: int = 10,
        *,
        wait_ms: int = 0,
        retry_delay_ms: int = 100,
    ) -> str | None:
        """Try to take the lock.

        Args:
            name: Lock name.
            ttl: Seconds before the lock expires on its own.
            wait_ms: How long to keep retrying; 0 makes a single attempt.
            retry_delay_ms: Pause between attempts.

        Returns:
            The owner token needed to release or extend, or None.
        """
        lock = self._lock(
            name,
            ttl,
            sleep=retry_delay_ms / 1000,
            blocking=wait_ms > 0,
            blocking_timeout=wait_ms / 1000 if wait_ms > 0 else None,
        )
        token = generate_token()
        try:
            acquired = await lock.acquire(token=token)
        except _LOCK_ERRORS as exc:
            self._log_error("lock.acquire_error", name, exc)
            return None

        if not acquired:
            logger.debug("lock.busy", extra={"lock_key": self._key(name), "wait_ms": wait_ms})
            return None
        logger.debug("lock.acquired", extra={"lock_key": self._key(name), "ttl_s": ttl})
        return token

    async def release(self, name: str, token: str) -> bool:
        """Release the lock if ``token`` still owns it."""
        try:
            await self._lock(name, token=token).release()
        except LockNotOwnedError:
            logger.debug("lock.release_failed", extra={"lock_key": self._key(name), "reason": "not_owner_or_expired"})
            return False
        except _LOCK_ERRORS as exc:
            self._log_error("lock.release_error", name, exc)
            return False

        logger.debug("lock.released", extra={"lock_key": self._key(name)})
        return True

    async def extend(self, name: str, token: str, ttl: int) -> bool:
        """Reset the lock's expiry to ``ttl`` seconds if ``token`` owns it."""
        try:
            return await self._lock(name, ttl, token=token).extend(ttl, replace_ttl=True)
        except LockNotOwnedError:
            return False
        except _LOCK_ERRORS as exc:
            self._log_error("lock.extend_error", name, exc)
            return False

    async def is_owned(self, name: str, token: str) -> bool:
        try:
            return await self._lock(name, token=token).owned()
        except _LOCK_ERRORS as exc:
            self._log_error("lock.check_error", name, exc)
            return False

    async def with_lock(
        self,
        name: str,
        callback: Callable[[], Any | Awaitable[Any]],
        ttl: int = 10,
        default: Any = None,
    ) -> Any:
        """Run ``callback`` while holding the lock.

        The lock is always released afterwards, even if ``callback`` raises.

        Returns:
            The callback's result, or ``default`` when the lock is busy.
        """
        token = await self.acquire(name, ttl)
        if token is None:
            return default

        try:
            result = callback()
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            await self.release(name, token)
