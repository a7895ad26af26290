"""
Named mutual exclusion.

Every mutating operation on a booking, ride group or vehicle runs inside
a lock keyed ``ridepool:lock:{kind}:{id}``.  Acquisition waits up to a
bound (default 5 s); a held lock expires after its lease (default 10 s)
so a crashed holder cannot wedge the key.

Two backends share the ``LockService`` interface:

* ``RedisLockService`` -- SET NX PX for acquire (polled until the wait
  bound) and a Lua script for atomic check-and-delete on release.
* ``InMemoryLockService`` -- a single-process equivalent with the same
  lease semantics, used in tests and single-instance deployments.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis

from ridepool.domain.errors import LockAcquisitionError

logger = logging.getLogger(__name__)

KEY_PREFIX = "ridepool:lock"

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def booking_key(booking_id: int) -> str:
    return f"{KEY_PREFIX}:booking:{booking_id}"


def ride_group_key(group_id: int) -> str:
    return f"{KEY_PREFIX}:ride-group:{group_id}"


def vehicle_key(vehicle_id: int) -> str:
    return f"{KEY_PREFIX}:vehicle:{vehicle_id}"


class LockService(ABC):
    def __init__(self, wait_seconds: float = 5.0, lease_seconds: float = 10.0):
        self.wait_seconds = wait_seconds
        self.lease_seconds = lease_seconds

    @abstractmethod
    async def acquire(
        self, key: str, wait_seconds: float, lease_seconds: float
    ) -> Optional[str]:
        """Return an ownership token, or ``None`` if the wait bound elapsed."""

    @abstractmethod
    async def release(self, key: str, token: str) -> bool:
        """Release only if *token* still owns *key*."""

    @abstractmethod
    async def is_locked(self, key: str) -> bool: ...

    @asynccontextmanager
    async def hold(
        self,
        key: str,
        wait_seconds: Optional[float] = None,
        lease_seconds: Optional[float] = None,
    ) -> AsyncIterator[str]:
        wait = self.wait_seconds if wait_seconds is None else wait_seconds
        lease = self.lease_seconds if lease_seconds is None else lease_seconds

        token = await self.acquire(key, wait, lease)
        if token is None:
            logger.warning("Lock %s not acquired within %.1fs", key, wait)
            raise LockAcquisitionError(key, wait)
        try:
            yield token
        finally:
            if not await self.release(key, token):
                logger.warning("Lock %s expired before release", key)

    async def close(self) -> None:
        """Release backend resources."""


class RedisLockService(LockService):
    poll_interval = 0.05

    def __init__(
        self,
        client: aioredis.Redis,
        wait_seconds: float = 5.0,
        lease_seconds: float = 10.0,
    ):
        super().__init__(wait_seconds, lease_seconds)
        self.redis = client

    async def acquire(self, key, wait_seconds, lease_seconds):
        token = str(uuid.uuid4())
        lease_ms = max(1, int(lease_seconds * 1000))
        deadline = time.monotonic() + wait_seconds
        while True:
            if await self.redis.set(key, token, nx=True, px=lease_ms):
                return token
            if time.monotonic() >= deadline:
                return None
            await asyncio.sleep(self.poll_interval)

    async def release(self, key, token):
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, key, token))

    async def is_locked(self, key):
        return bool(await self.redis.exists(key))

    async def close(self) -> None:
        await self.redis.aclose()


class InMemoryLockService(LockService):
    """Process-local locks with lease expiry."""

    def __init__(self, wait_seconds: float = 5.0, lease_seconds: float = 10.0):
        super().__init__(wait_seconds, lease_seconds)
        # key -> (token, expires_at)
        self._held: dict[str, tuple[str, float]] = {}
        self._released = asyncio.Condition()

    def _owner(self, key: str) -> Optional[str]:
        entry = self._held.get(key)
        if entry is None:
            return None
        token, expires_at = entry
        if time.monotonic() >= expires_at:
            del self._held[key]
            return None
        return token

    async def acquire(self, key, wait_seconds, lease_seconds):
        deadline = time.monotonic() + wait_seconds
        async with self._released:
            while self._owner(key) is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                # re-check periodically so an expired lease is noticed
                try:
                    await asyncio.wait_for(
                        self._released.wait(), timeout=min(remaining, 0.25)
                    )
                except asyncio.TimeoutError:
                    pass
            token = str(uuid.uuid4())
            self._held[key] = (token, time.monotonic() + lease_seconds)
            return token

    async def release(self, key, token):
        async with self._released:
            if self._owner(key) != token:
                return False
            del self._held[key]
            self._released.notify_all()
            return True

    async def is_locked(self, key):
        return self._owner(key) is not None
