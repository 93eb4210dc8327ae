"""Rate limiter interfaces and value types.

The limiter logic depends on ``AbstractRateLimitStore`` (not a concrete
backend) so the same decisions are made whether state lives in Redis or in
process memory.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class RateLimitPolicy:
    """Thresholds applied to one (ip, method, path) key.

    Attributes:
        max_attempts: Requests admitted per decay window.
        decay_minutes: Idle time after which the attempt counter expires.
        block_minutes: Cooldown applied once ``max_attempts`` is reached.
    """

    max_attempts: int
    decay_minutes: int
    block_minutes: int

    @property
    def decay_seconds(self) -> int:
        return self.decay_minutes * 60

    @property
    def block_seconds(self) -> int:
        return self.block_minutes * 60


@dataclass(frozen=True)
class Allow:
    """The request may proceed.

    Attributes:
        limit: Policy ``max_attempts`` (None when no counting happened).
        remaining: Attempts left in the window after this request.
        reset_at: UNIX epoch seconds when the counter expires if idle.
        skipped: The path is on the skip list; the store was not touched.
        degraded: The store failed and the request was admitted anyway.
    """

    limit: int | None = None
    remaining: int | None = None
    reset_at: int | None = None
    skipped: bool = False
    degraded: bool = False

    @property
    def has_quota(self) -> bool:
        return self.limit is not None and self.remaining is not None and self.reset_at is not None


@dataclass(frozen=True)
class Blocked:
    """The request must be rejected with 429.

    Attributes:
        retry_after: Seconds until the block expires.
        limit: Policy ``max_attempts`` that was exceeded.
    """

    retry_after: int
    limit: int


Decision = Union[Allow, Blocked]


class AbstractRateLimitStore(ABC):
    """Key-value operations the rate limiter needs from its store.

    Implementations raise ``StoreUnavailableAppError`` when the store cannot
    be reached; the limiter turns that into a fail-open decision.
    """

    @abstractmethod
    async def get_attempts(self, key: str) -> int:
        """Return the attempt counter for ``key`` (0 when absent)."""
        raise NotImplementedError

    @abstractmethod
    async def increment(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment ``key`` and reset its TTL.

        Returns:
            The counter value after incrementing.
        """
        raise NotImplementedError

    @abstractmethod
    async def block(self, key: str, ttl_seconds: int) -> bool:
        """Create the block flag ``key`` unless it already exists.

        Returns:
            True when this call created the flag.
        """
        raise NotImplementedError

    @abstractmethod
    async def block_ttl(self, key: str) -> int | None:
        """Return the remaining TTL of ``key`` in seconds.

        Returns:
            None when the key does not exist, -1 when it has no expiry.
        """
        raise NotImplementedError

    async def ping(self) -> bool:
        """Report whether the store is reachable."""
        return True

    async def close(self) -> None:
        """Release any resources held by the store."""
