"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set before anything imports ``app.core.config`` so
tests never need a running Redis: the in-memory store is the default backend.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("APP_RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("LOG_FORMAT", "plain")

import pytest

from app.adapters.rate_limit.base import RateLimitPolicy
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.core.config import DEFAULT_SKIP_PATTERNS, PathPolicy
from app.core.rate_limit import set_rate_limiter
from app.services.rate_limiter import RateLimiter


class FakeTime:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


LOGIN_POLICY = PathPolicy(prefix="/api/auth/login", max_attempts=10, decay_minutes=1, block_minutes=10)
REGISTER_POLICY = PathPolicy(prefix="/api/auth/register", max_attempts=5, decay_minutes=1, block_minutes=15)


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def memory_store(fake_time: FakeTime) -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore(clock=fake_time.time)


@pytest.fixture
def limiter(memory_store: InMemoryRateLimitStore, fake_time: FakeTime) -> RateLimiter:
    return RateLimiter(
        memory_store,
        default_policy=RateLimitPolicy(max_attempts=60, decay_minutes=1, block_minutes=5),
        path_policies=[LOGIN_POLICY, REGISTER_POLICY],
        skip_patterns=DEFAULT_SKIP_PATTERNS,
        clock=fake_time.time,
    )


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Drop any limiter a test installed so state never leaks between tests."""
    yield
    set_rate_limiter(None)
