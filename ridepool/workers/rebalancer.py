"""
Background Rebalance Reactor
============================

Cancellations (and explicit API requests) post a ``RebalanceSignal`` onto
an ``asyncio.Queue``; a small pool of worker tasks drains it off the
caller's path.

Concurrency safety
------------------
* Each signal is handled under the ``ride-group:{id}`` lock, the same key
  used by cancellation and by attaching new bookings, so group totals are
  never updated concurrently.
* Handler failures are logged and swallowed; the triggering request has
  already committed its own state.

Algorithm per signal
--------------------
1. Skip unknown or terminal (COMPLETED / CANCELLED) groups.
2. Partition members into active (CONFIRMED / IN_PROGRESS) bookings.
3. None left: cancel the group and release its vehicle.
4. Fewer than ``MIN_ACTIVE_FOR_DISPATCH`` while FORMING: merge hook.
5. Otherwise: recompute passenger and luggage totals from active members.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridepool.domain.enums import (
    ACTIVE_MEMBER_STATUSES,
    TERMINAL_GROUP_STATUSES,
    BookingStatus,
    RideGroupStatus,
)
from ridepool.infrastructure.locks import LockService, ride_group_key
from ridepool.infrastructure.models import BookingModel, RideGroupModel
from ridepool.infrastructure.repositories import RideGroupRepository

logger = logging.getLogger(__name__)

MIN_ACTIVE_FOR_DISPATCH = 1


@dataclass(frozen=True)
class RebalanceSignal:
    group_id: int
    reason: str


class RebalanceReactor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: LockService,
        *,
        workers: int = 2,
    ):
        self.session_factory = session_factory
        self.locks = locks
        self.worker_count = workers
        self.queue: asyncio.Queue[RebalanceSignal] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None

    # ── Public API ────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        self._stop_event = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._worker(n), name=f"rebalance-worker-{n}")
            for n in range(self.worker_count)
        ]
        logger.info("Rebalance reactor started (workers=%d)", self.worker_count)

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Rebalance reactor stopped")

    def submit(self, group_id: int, reason: str) -> None:
        """Queue a rebalance; never blocks the caller."""
        self.queue.put_nowait(RebalanceSignal(group_id, reason))
        logger.debug("Rebalance queued for group %s (%s)", group_id, reason)

    async def join(self) -> None:
        """Wait until every queued signal has been handled."""
        await self.queue.join()

    async def rebalance(self, group_id: int, reason: str = "manual") -> None:
        async with self.locks.hold(ride_group_key(group_id)):
            async with self.session_factory() as session:
                group = await RideGroupRepository(session).get_by_id_for_update(group_id)
                if group is None:
                    logger.warning("Ride group %s not found for rebalancing", group_id)
                    return
                if RideGroupStatus(group.status) in TERMINAL_GROUP_STATUSES:
                    logger.debug("Skipping rebalance for terminal group %s", group_id)
                    return

                logger.info(
                    "Rebalancing group %s (%s), %d passengers",
                    group_id, reason, group.total_passengers,
                )
                active = [
                    b for b in group.bookings
                    if BookingStatus(b.status) in ACTIVE_MEMBER_STATUSES
                ]
                if not active:
                    group.recalculate_totals(active)
                    group.cancel()
                    logger.info("Cancelled empty ride group %s", group_id)
                elif (
                    len(active) < MIN_ACTIVE_FOR_DISPATCH
                    and RideGroupStatus(group.status) == RideGroupStatus.FORMING
                ):
                    self._try_merge(group, active)
                else:
                    self._update_totals(group, active)

                await session.commit()

    # ── Internals ─────────────────────────────────────────────────────

    def _try_merge(self, group: RideGroupModel, active: list[BookingModel]) -> None:
        # TODO: move the active bookings into a compatible FORMING group with
        # headroom (same destination, overlapping window), then cancel this one.
        logger.debug("Merge hook for group %s with %d bookings", group.id, len(active))
        self._update_totals(group, active)

    def _update_totals(self, group: RideGroupModel, active: list[BookingModel]) -> None:
        group.recalculate_totals(active)
        logger.info(
            "Group %s after rebalance: %d passengers, %.1f kg luggage",
            group.id, group.total_passengers, group.total_luggage_weight_kg,
        )

    async def _worker(self, n: int) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            signal = await self.queue.get()
            try:
                await self.rebalance(signal.group_id, signal.reason)
            except Exception:
                logger.exception(
                    "Rebalance of group %s failed (worker %d)", signal.group_id, n
                )
            finally:
                self.queue.task_done()
