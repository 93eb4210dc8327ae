"""In-memory rate limit store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Use the Redis store whenever more than one worker serves traffic.
- Expiry is lazy: an entry is dropped the next time it is read after its
  deadline, mirroring Redis TTL semantics from the caller's point of view.
  Writes also sweep every expired entry once per ``sweep_interval`` seconds,
  so tuples that never come back do not stay in memory.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimitStore


@dataclass
class _Entry:
    value: int
    expires_at: float | None


class InMemoryRateLimitStore(AbstractRateLimitStore):
    """Rate limit store backed by a dict with per-key expiry.

    Args:
        clock: Time source returning UNIX time in seconds.
        sweep_interval: Minimum seconds between full sweeps of expired entries.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = 60.0,
    ) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}
        self._sweep_interval = sweep_interval
        self._next_sweep_at = clock() + sweep_interval

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryRateLimitStore(size={len(self._entries)})"

    def _live_entry(self, key: str, now: float) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= now:
            del self._entries[key]
            return None
        return entry

    def _maybe_sweep(self, now: float) -> None:
        if now < self._next_sweep_at:
            return
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.expires_at is not None and entry.expires_at <= now
        ]
        for key in expired:
            del self._entries[key]
        self._next_sweep_at = now + self._sweep_interval

    async def get_attempts(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry(key, self._clock())
            return entry.value if entry else 0

    async def increment(self, key: str, ttl_seconds: int) -> int:
        now = self._clock()
        with self._lock:
            self._maybe_sweep(now)
            entry = self._live_entry(key, now)
            if entry is None:
                entry = _Entry(value=0, expires_at=None)
                self._entries[key] = entry
            entry.value += 1
            entry.expires_at = now + ttl_seconds
            return entry.value

    async def block(self, key: str, ttl_seconds: int) -> bool:
        now = self._clock()
        with self._lock:
            self._maybe_sweep(now)
            if self._live_entry(key, now) is not None:
                return False
            self._entries[key] = _Entry(value=1, expires_at=now + ttl_seconds)
            return True

    async def block_ttl(self, key: str) -> int | None:
        now = self._clock()
        with self._lock:
            entry = self._live_entry(key, now)
            if entry is None:
                return None
            if entry.expires_at is None:
                return -1
            return int(math.ceil(entry.expires_at - now))

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()
