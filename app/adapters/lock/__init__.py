"""Distributed locking over Redis."""

from app.adapters.lock.redis_lock import RedisLock

__all__ = ["RedisLock"]
