"""Unit tests for the Redis distributed lock.

Most tests stub ``client.lock`` with a spec'd redis-py ``Lock`` and check how
the wrapper drives it. One test runs the real ``Lock`` over a client whose
commands are mocked, to pin down token encoding.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.asyncio import Redis
from redis.asyncio.lock import Lock
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockNotOwnedError

from app.adapters.lock.redis_lock import RedisLock, generate_token


@pytest.fixture
def lib_lock() -> MagicMock:
    lock = MagicMock(spec=Lock)
    lock.local = SimpleNamespace(token=None)
    lock.acquire = AsyncMock(return_value=True)
    lock.release = AsyncMock(return_value=None)
    lock.extend = AsyncMock(return_value=True)
    lock.owned = AsyncMock(return_value=True)
    return lock


@pytest.fixture
def client(lib_lock: MagicMock) -> MagicMock:
    client = MagicMock()
    client.lock.return_value = lib_lock
    return client


@pytest.fixture
def lock(client: MagicMock) -> RedisLock:
    return RedisLock(client, prefix="lock:")


def test_tokens_are_unique() -> None:
    tokens = {generate_token() for _ in range(50)}
    assert len(tokens) == 50


@pytest.mark.asyncio
async def test_acquire_is_non_blocking_by_default(lock: RedisLock, client: MagicMock, lib_lock: MagicMock) -> None:
    token = await lock.acquire("orders", ttl=5)

    assert token
    client.lock.assert_called_once_with(
        "lock:orders", timeout=5, thread_local=False, sleep=0.1, blocking=False, blocking_timeout=None
    )
    lib_lock.acquire.assert_awaited_once_with(token=token)


@pytest.mark.asyncio
async def test_acquire_with_wait_maps_to_blocking_timeout(lock: RedisLock, client: MagicMock) -> None:
    await lock.acquire("orders", wait_ms=1500, retry_delay_ms=50)

    kwargs = client.lock.call_args.kwargs
    assert kwargs["blocking"] is True
    assert kwargs["blocking_timeout"] == 1.5
    assert kwargs["sleep"] == 0.05


@pytest.mark.asyncio
async def test_acquire_busy_returns_none(lock: RedisLock, lib_lock: MagicMock) -> None:
    lib_lock.acquire.return_value = False
    assert await lock.acquire("orders") is None


@pytest.mark.asyncio
async def test_acquire_redis_error_is_not_raised(lock: RedisLock, lib_lock: MagicMock) -> None:
    lib_lock.acquire.side_effect = RedisConnectionError("Connection refused")
    assert await lock.acquire("orders") is None


@pytest.mark.asyncio
async def test_release_uses_the_callers_token(lock: RedisLock, client: MagicMock, lib_lock: MagicMock) -> None:
    assert await lock.release("orders", "tok") is True

    assert client.lock.call_args.args == ("lock:orders",)
    assert lib_lock.local.token == b"tok"
    lib_lock.release.assert_awaited_once_with()


@pytest.mark.asyncio
async def test_release_by_non_owner_fails(lock: RedisLock, lib_lock: MagicMock) -> None:
    lib_lock.release.side_effect = LockNotOwnedError("Cannot release a lock that's no longer owned")
    assert await lock.release("orders", "someone-else") is False


@pytest.mark.asyncio
async def test_extend_replaces_the_ttl(lock: RedisLock, client: MagicMock, lib_lock: MagicMock) -> None:
    assert await lock.extend("orders", "tok", 30) is True

    assert client.lock.call_args.kwargs["timeout"] == 30
    lib_lock.extend.assert_awaited_once_with(30, replace_ttl=True)

    lib_lock.extend.side_effect = LockNotOwnedError("Cannot extend a lock that's no longer owned")
    assert await lock.extend("orders", "tok", 30) is False

    lib_lock.extend.side_effect = RedisConnectionError("Connection refused")
    assert await lock.extend("orders", "tok", 30) is False


@pytest.mark.asyncio
async def test_is_owned_checks_with_token(lock: RedisLock, lib_lock: MagicMock) -> None:
    assert await lock.is_owned("orders", "tok") is True
    assert lib_lock.local.token == b"tok"

    lib_lock.owned.side_effect = RedisConnectionError("Connection refused")
    assert await lock.is_owned("orders", "tok") is False


@pytest.mark.asyncio
async def test_tokens_round_trip_through_the_library_lock() -> None:
    client = Redis(decode_responses=True)
    client.set = AsyncMock(return_value=True)
    client.get = AsyncMock()
    lock = RedisLock(client, prefix="lock:")

    token = await lock.acquire("orders", ttl=5)

    client.set.assert_awaited_once_with("lock:orders", token.encode(), nx=True, px=5000)
    client.get.return_value = token
    assert await lock.is_owned("orders", token) is True
    assert await lock.is_owned("orders", "someone-else") is False
    await client.aclose()


@pytest.mark.asyncio
async def test_with_lock_runs_callback_and_releases(lock: RedisLock, lib_lock: MagicMock) -> None:
    async def work() -> str:
        await asyncio.sleep(0)
        return "done"

    assert await lock.with_lock("orders", work) == "done"
    assert await lock.with_lock("orders", lambda: 42) == 42
    assert lib_lock.release.await_count == 2


@pytest.mark.asyncio
async def test_with_lock_returns_default_when_busy(lock: RedisLock, lib_lock: MagicMock) -> None:
    lib_lock.acquire.return_value = False
    callback = MagicMock()

    assert await lock.with_lock("orders", callback, default="busy") == "busy"
    callback.assert_not_called()
    lib_lock.release.assert_not_awaited()


@pytest.mark.asyncio
async def test_with_lock_releases_when_callback_raises(lock: RedisLock, lib_lock: MagicMock) -> None:
    def fail() -> None:
        raise ValueError("boom")

    with pytest.raises(ValueError):
        await lock.with_lock("orders", fail)
    lib_lock.release.assert_awaited_once()
