"""
Lock service tests.

1. Redis backend against a mocked client: SET NX PX acquire, Lua release.
2. In-process backend: mutual exclusion, bounded wait, lease expiry and
   token-checked release.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from ridepool.domain.errors import LockAcquisitionError
from ridepool.infrastructure.locks import (
    InMemoryLockService,
    RedisLockService,
    booking_key,
    ride_group_key,
    vehicle_key,
)


def test_key_layout():
    assert booking_key(7) == "ridepool:lock:booking:7"
    assert ride_group_key(3) == "ridepool:lock:ride-group:3"
    assert vehicle_key(12) == "ridepool:lock:vehicle:12"


class TestRedisLockService:
    """Mocked Redis."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        locks = RedisLockService(mock_redis)
        token = await locks.acquire("test-key", 1.0, 10.0)

        assert token is not None
        mock_redis.set.assert_awaited_once_with("test-key", token, nx=True, px=10_000)

    @pytest.mark.asyncio
    async def test_acquire_gives_up_after_wait(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        locks = RedisLockService(mock_redis)
        locks.poll_interval = 0.01
        assert await locks.acquire("test-key", 0.05, 10.0) is None
        assert mock_redis.set.await_count >= 2

    @pytest.mark.asyncio
    async def test_release_calls_eval_with_token(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        locks = RedisLockService(mock_redis)
        token = await locks.acquire("test-key", 1.0, 10.0)
        assert await locks.release("test-key", token) is True

        args = mock_redis.eval.await_args.args
        assert args[1:] == (1, "test-key", token)

    @pytest.mark.asyncio
    async def test_hold_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        locks = RedisLockService(mock_redis, wait_seconds=0.0)
        with pytest.raises(LockAcquisitionError, match="Unable to acquire lock test-key"):
            async with locks.hold("test-key"):
                pass

    @pytest.mark.asyncio
    async def test_is_locked(self):
        mock_redis = AsyncMock()
        mock_redis.exists = AsyncMock(return_value=1)
        assert await RedisLockService(mock_redis).is_locked("test-key") is True


@pytest.mark.asyncio
class TestInMemoryLockService:
    async def test_second_acquire_waits_then_fails(self):
        locks = InMemoryLockService(wait_seconds=0.1)
        token = await locks.acquire("k", 0.1, 10.0)
        assert token is not None
        assert await locks.acquire("k", 0.1, 10.0) is None
        assert await locks.is_locked("k")

    async def test_release_hands_over(self):
        locks = InMemoryLockService()
        token = await locks.acquire("k", 1.0, 10.0)
        waiter = asyncio.create_task(locks.acquire("k", 1.0, 10.0))
        await asyncio.sleep(0.02)
        assert not waiter.done()

        assert await locks.release("k", token)
        assert await waiter is not None

    async def test_wrong_token_cannot_release(self):
        locks = InMemoryLockService()
        await locks.acquire("k", 1.0, 10.0)
        assert await locks.release("k", "someone-else") is False
        assert await locks.is_locked("k")

    async def test_lease_expires(self):
        locks = InMemoryLockService()
        stale = await locks.acquire("k", 1.0, 0.05)
        await asyncio.sleep(0.08)
        assert not await locks.is_locked("k")
        assert await locks.acquire("k", 0.1, 10.0) is not None
        assert await locks.release("k", stale) is False

    async def test_independent_keys(self):
        locks = InMemoryLockService()
        assert await locks.acquire(booking_key(1), 0.1, 10.0)
        assert await locks.acquire(booking_key(2), 0.1, 10.0)

    async def test_hold_serializes_critical_sections(self):
        locks = InMemoryLockService()
        inside = 0
        peak = 0

        async def critical():
            nonlocal inside, peak
            async with locks.hold("k"):
                inside += 1
                peak = max(peak, inside)
                await asyncio.sleep(0.01)
                inside -= 1

        await asyncio.gather(*(critical() for _ in range(5)))
        assert peak == 1
        assert not await locks.is_locked("k")

    async def test_hold_releases_on_error(self):
        locks = InMemoryLockService()
        with pytest.raises(ValueError):
            async with locks.hold("k"):
                raise ValueError("boom")
        assert not await locks.is_locked("k")
