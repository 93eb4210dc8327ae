"""Rate limiting adapters.

This package holds the store abstraction used by the rate limiter plus its two
backends: Redis (shared across workers) and process memory (single worker,
development and tests).
"""

from app.adapters.rate_limit.base import (
    AbstractRateLimitStore,
    Allow,
    Blocked,
    Decision,
    RateLimitPolicy,
)
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.redis_store import RedisRateLimitStore

__all__ = [
    "AbstractRateLimitStore",
    "Allow",
    "Blocked",
    "Decision",
    "InMemoryRateLimitStore",
    "RateLimitPolicy",
    "RedisRateLimitStore",
]
