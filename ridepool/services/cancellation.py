"""
Cancellation workflow.

Runs under the ``booking:{id}`` lock, and additionally ``ride-group:{id}``
when the booking belongs to a group, in a single unit of work:

1. Load the booking for update; only PENDING / CONFIRMED may be cancelled,
   and not once the group has actually departed.
2. Fee: free when more than ``free_cancellation_minutes`` remain before
   pickup, otherwise ``final_fare x fee_fraction`` (half-up to cents).
   Refund is the remainder, or 0 when no fare was ever computed.
3. Persist the ``Cancellation``, mark the booking CANCELLED and detach it
   through the group's removal path.
4. Commit, release the locks, then queue a rebalance for the group.

A second concurrent cancellation of the same booking waits on the lock
and then sees CANCELLED, or times out; it never produces a second record.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridepool.domain.entities import CancellationRequest, utcnow
from ridepool.domain.enums import CANCELLABLE_BOOKING_STATUSES, BookingStatus
from ridepool.domain.errors import CancellationError, ResourceNotFoundError
from ridepool.domain.pricing import money
from ridepool.infrastructure.locks import LockService, booking_key, ride_group_key
from ridepool.infrastructure.models import BookingModel, CancellationModel, RideGroupModel
from ridepool.infrastructure.repositories import (
    BookingRepository,
    CancellationRepository,
    RideGroupRepository,
)
from ridepool.services.grouping import RideGroupingService
from ridepool.services.pricing import PricingEngine
from ridepool.workers.rebalancer import RebalanceReactor

logger = logging.getLogger(__name__)


class CancellationService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        grouping: RideGroupingService,
        pricing: PricingEngine,
        locks: LockService,
        reactor: Optional[RebalanceReactor] = None,
        *,
        free_cancellation_minutes: int = 10,
        fee_fraction: float = 0.20,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.grouping = grouping
        self.pricing = pricing
        self.locks = locks
        self.reactor = reactor
        self.free_cancellation_minutes = free_cancellation_minutes
        self.fee_fraction = Decimal(str(fee_fraction))
        self.clock = clock

    async def cancel(self, request: CancellationRequest) -> CancellationModel:
        logger.info("Processing cancellation for booking %s", request.booking_id)

        async with self.locks.hold(booking_key(request.booking_id)):
            async with self.session_factory() as session:
                booking = await BookingRepository(session).get_by_id_for_update(
                    request.booking_id
                )
                if booking is None:
                    raise ResourceNotFoundError("Booking", request.booking_id)
                self._check_status(booking)

                group_id = booking.ride_group_id
                if group_id is None:
                    cancellation = await self._apply(session, booking, None, request)
                else:
                    async with self.locks.hold(ride_group_key(group_id)):
                        group = await RideGroupRepository(session).get_by_id_for_update(
                            group_id
                        )
                        cancellation = await self._apply(session, booking, group, request)

        self.pricing.invalidate_surge()
        if group_id is not None and self.reactor is not None:
            self.reactor.submit(group_id, f"Booking cancelled: {booking.id}")

        logger.info(
            "Booking %s cancelled. Fee: %s, Refund: %s",
            booking.id, cancellation.cancellation_fee, cancellation.refund_amount,
        )
        return cancellation

    async def can_cancel(self, booking_id: int) -> bool:
        async with self.session_factory() as session:
            booking = await BookingRepository(session).get_by_id(booking_id)
        return booking is not None and BookingStatus(booking.status) in CANCELLABLE_BOOKING_STATUSES

    def calculate_fee(self, booking: BookingModel, now: datetime) -> Decimal:
        if booking.final_fare is None:
            return Decimal("0.00")
        minutes_until_pickup = int((booking.requested_pickup_time - now).total_seconds() / 60)
        if minutes_until_pickup > self.free_cancellation_minutes:
            return Decimal("0.00")
        return money(Decimal(booking.final_fare) * self.fee_fraction)

    @staticmethod
    def calculate_refund(booking: BookingModel, fee: Decimal) -> Decimal:
        if booking.final_fare is None:
            return Decimal("0.00")
        return money(Decimal(booking.final_fare) - fee)

    # ── Internals ─────────────────────────────────────────────────────

    def _check_status(self, booking: BookingModel) -> None:
        status = BookingStatus(booking.status)
        if status not in CANCELLABLE_BOOKING_STATUSES:
            raise CancellationError(
                f"Cannot cancel booking with status: {status.value}",
                "INVALID_STATUS_FOR_CANCELLATION",
            )

    async def _apply(
        self,
        session: AsyncSession,
        booking: BookingModel,
        group: Optional[RideGroupModel],
        request: CancellationRequest,
    ) -> CancellationModel:
        if (
            BookingStatus(booking.status) == BookingStatus.CONFIRMED
            and group is not None
            and group.actual_departure_time is not None
        ):
            raise CancellationError("Cannot cancel - ride has already started", "RIDE_IN_PROGRESS")

        now = self.clock()
        fee = self.calculate_fee(booking, now)
        cancellation = await CancellationRepository(session).create(
            CancellationModel(
                booking_id=booking.id,
                cancelled_at=now,
                reason=request.reason,
                initiated_by=request.initiated_by or "PASSENGER",
                cancellation_fee=fee,
                refund_amount=self.calculate_refund(booking, fee),
                triggered_rebalance=group is not None,
                affected_ride_group_id=group.id if group is not None else None,
            )
        )

        booking.transition_to(BookingStatus.CANCELLED)
        if group is not None:
            self.grouping.remove_from_group(group, booking)
        await session.commit()
        return cancellation
