"""Per-origin, per-route admission control.

Each (client IP, HTTP method, path) tuple owns two keys in the store:

- ``{prefix}:{ip}:{METHOD}:{md5(path)}`` counts requests. Every admitted
  request increments it and resets its TTL to the decay window, so the window
  slides: the counter only expires after ``decay_minutes`` without traffic.
- ``<counter key>:blocked`` exists while the tuple is cooling down. While it
  exists requests are rejected before anything is counted.

State machine per key::

    [no counter] --request--> [counting] --count reaches max--> [blocked]
         ^                        |                                 |
         +----decay TTL expiry----+--------block TTL expiry---------+

Reading the counter and raising the block are separate commands, so requests
racing at the threshold may each raise the flag. ``SET NX`` makes that
harmless; the flag's existence is all that matters.

The limiter keeps no mutable state of its own. Store failures make it fail
open: the request is admitted and the failure logged.
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
from typing import Callable, Iterable, Sequence

from app.adapters.rate_limit.base import (
    AbstractRateLimitStore,
    Allow,
    Blocked,
    Decision,
    RateLimitPolicy,
)
from app.core.config import PathPolicy
from app.core.errors import ConfigurationAppError, StoreUnavailableAppError

logger = logging.getLogger(__name__)

DEFAULT_POLICY = RateLimitPolicy(max_attempts=60, decay_minutes=1, block_minutes=5)
BLOCK_SUFFIX = ":blocked"
UNKNOWN_IP = "unknown"


def _compile_patterns(patterns: Iterable[str]) -> list[re.Pattern[str]]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as exc:
            raise ConfigurationAppError(
                code="invalid_skip_pattern",
                message=f"Invalid rate limit skip pattern: {exc}",
                details={"pattern": pattern},
            ) from exc
    return compiled


def _policy_from(path_policy: PathPolicy) -> RateLimitPolicy:
    return RateLimitPolicy(
        max_attempts=path_policy.max_attempts,
        decay_minutes=path_policy.decay_minutes,
        block_minutes=path_policy.block_minutes,
    )


class RateLimiter:
    """Decide whether a request is admitted, counting it when it is.

    Args:
        store: Backend holding attempt counters and block flags.
        default_policy: Policy for paths without a prefix override.
        path_policies: Prefix overrides, checked in declaration order.
        skip_patterns: Regexes for paths that are never limited.
        key_prefix: Namespace for every key this limiter writes.
        clock: Time source used for the ``reset_at`` timestamp.

    Raises:
        ConfigurationAppError: If a skip pattern is not a valid regex.
    """

    def __init__(
        self,
        store: AbstractRateLimitStore,
        *,
        default_policy: RateLimitPolicy = DEFAULT_POLICY,
        path_policies: Sequence[PathPolicy] = (),
        skip_patterns: Iterable[str] = (),
        key_prefix: str = "rate_limit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._default_policy = default_policy
        self._path_policies = [(p.prefix, _policy_from(p)) for p in path_policies]
        self._skip_patterns = _compile_patterns(skip_patterns)
        self._key_prefix = key_prefix
        self._clock = clock

    @property
    def store(self) -> AbstractRateLimitStore:
        return self._store

    def should_skip(self, path: str) -> bool:
        return any(pattern.search(path) for pattern in self._skip_patterns)

    def resolve_policy(self, path: str) -> RateLimitPolicy:
        for prefix, policy in self._path_policies:
            if path.startswith(prefix):
                return policy
        return self._default_policy

    def build_key(self, ip: str, method: str, path: str) -> str:
        """Derive the attempt counter key for a request.

        The query string is dropped and the path hashed, which bounds key
        length and keeps arbitrary characters out of key names.
        """
        clean_path = path.partition("?")[0]
        path_hash = hashlib.md5(clean_path.encode("utf-8")).hexdigest()
        return f"{self._key_prefix}:{ip or UNKNOWN_IP}:{method.upper()}:{path_hash}"

    async def admit(self, ip: str, method: str, path: str) -> Decision:
        """Admit or block one request.

        Args:
            ip: Client IP address, ``"unknown"`` when unavailable.
            method: HTTP method.
            path: Request path; a query string, if present, is ignored.

        Returns:
            ``Allow`` with quota details, or ``Blocked`` with a retry hint.
            Never raises for store failures.
        """
        if self.should_skip(path):
            logger.debug("rate_limit.skipped", extra={"path": path})
            return Allow(skipped=True)

        policy = self.resolve_policy(path)
        key = self.build_key(ip, method, path)
        block_key = key + BLOCK_SUFFIX

        try:
            return await self._decide(key, block_key, policy, ip=ip, method=method, path=path)
        except StoreUnavailableAppError as exc:
            logger.warning(
                "rate_limit.store_unavailable",
                extra={
                    "error_code": exc.code,
                    "error_msg": exc.message[:200],
                    "ip": ip,
                    "path": path,
                    "method": method,
                },
            )
            return Allow(degraded=True)

    async def _decide(
        self,
        key: str,
        block_key: str,
        policy: RateLimitPolicy,
        *,
        ip: str,
        method: str,
        path: str,
    ) -> Decision:
        remaining_block = await self._store.block_ttl(block_key)
        if remaining_block is not None:
            if remaining_block == -1:
                # A flag without expiry should not exist; report the policy period.
                retry_after = policy.block_seconds
            else:
                retry_after = max(1, remaining_block)
            logger.info(
                "rate_limit.blocked",
                extra={"ip": ip, "path": path, "method": method, "retry_after_s": retry_after},
            )
            return Blocked(retry_after=retry_after, limit=policy.max_attempts)

        attempts = await self._store.get_attempts(key)
        if attempts >= policy.max_attempts:
            await self._store.block(block_key, policy.block_seconds)
            logger.warning(
                "rate_limit.block_raised",
                extra={
                    "ip": ip,
                    "path": path,
                    "method": method,
                    "attempts": attempts,
                    "block_minutes": policy.block_minutes,
                },
            )
            return Blocked(retry_after=policy.block_seconds, limit=policy.max_attempts)

        count = await self._store.increment(key, policy.decay_seconds)
        return Allow(
            limit=policy.max_attempts,
            remaining=max(0, policy.max_attempts - count),
            reset_at=int(self._clock()) + policy.decay_seconds,
        )
