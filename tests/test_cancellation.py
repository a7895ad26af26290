"""Integration tests for the cancellation workflow."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from ridepool.domain.distance import h3_cell
from ridepool.domain.entities import CancellationRequest
from ridepool.domain.enums import BookingStatus, RideGroupStatus, VehicleStatus
from ridepool.domain.errors import CancellationError, ResourceNotFoundError
from ridepool.domain.pricing import money
from ridepool.infrastructure.models import BookingModel, CancellationModel, RideGroupModel
from ridepool.infrastructure.repositories import BookingRepository, CancellationRepository

pytestmark = pytest.mark.asyncio


@pytest.fixture
def book(services, make_passenger, ride_request):
    async def _book(*args, **fields):
        passenger = await make_passenger()
        return await services.grouping.request_ride(ride_request(passenger.id, *args, **fields))

    return _book


async def test_sole_member_cancel_frees_vehicle(services, make_vehicle, book):
    vehicle = await make_vehicle()
    booking = await book()

    cancellation = await services.cancellation.cancel(
        CancellationRequest(booking.id, reason="Flight delayed")
    )

    assert cancellation.cancellation_fee == Decimal("0.00")
    assert cancellation.refund_amount == booking.final_fare
    assert cancellation.reason == "Flight delayed"
    assert cancellation.initiated_by == "PASSENGER"
    assert cancellation.triggered_rebalance is True
    assert cancellation.affected_ride_group_id == booking.ride_group_id

    stored = await services.grouping.get_booking(booking.id)
    assert stored.status == BookingStatus.CANCELLED
    assert stored.ride_group_id is None

    group = await services.grouping.get_group(booking.ride_group_id)
    assert group.status == RideGroupStatus.CANCELLED
    assert group.bookings == []
    assert group.total_passengers == 0

    vehicle = await services.fleet.get_vehicle(vehicle.id)
    assert vehicle.status == VehicleStatus.AVAILABLE
    assert vehicle.remaining_seats == 4

    assert services.reactor.queue.qsize() == 1


async def test_remaining_members_are_resequenced(services, make_vehicle, book, places):
    vehicle = await make_vehicle()
    first = await book()
    second = await book(places.colaba_nearby)

    await services.cancellation.cancel(CancellationRequest(first.id))

    group = await services.grouping.get_group(second.ride_group_id)
    assert group.status == RideGroupStatus.FORMING
    assert [b.id for b in group.bookings] == [second.id]
    assert group.bookings[0].pickup_sequence == 1
    assert group.optimized_route == str(second.id)
    assert group.total_passengers == 1
    assert (await services.fleet.get_vehicle(vehicle.id)).remaining_seats == 3


@pytest.mark.parametrize(
    "minutes_before, charged",
    [(60, False), (11, False), (10, True), (5, True), (0, True)],
)
async def test_late_cancellation_fee(services, make_vehicle, book, minutes_before, charged):
    await make_vehicle()
    booking = await book()
    services.cancellation.clock = lambda: booking.requested_pickup_time - timedelta(
        minutes=minutes_before
    )

    cancellation = await services.cancellation.cancel(CancellationRequest(booking.id))

    expected_fee = money(booking.final_fare * Decimal("0.20")) if charged else Decimal("0.00")
    assert cancellation.cancellation_fee == expected_fee
    assert cancellation.refund_amount + cancellation.cancellation_fee == booking.final_fare


async def test_partial_minutes_truncate(services, make_vehicle, book):
    await make_vehicle()
    booking = await book()
    services.cancellation.clock = lambda: booking.requested_pickup_time - timedelta(
        minutes=10, seconds=59
    )
    cancellation = await services.cancellation.cancel(CancellationRequest(booking.id))
    assert cancellation.cancellation_fee > 0


async def test_cannot_cancel_twice(services, make_vehicle, book):
    await make_vehicle()
    booking = await book()
    await services.cancellation.cancel(CancellationRequest(booking.id))

    with pytest.raises(CancellationError, match="Cannot cancel booking with status: CANCELLED") as exc:
        await services.cancellation.cancel(CancellationRequest(booking.id))
    assert exc.value.error_code == "INVALID_STATUS_FOR_CANCELLATION"


async def test_concurrent_cancels_record_once(services, make_vehicle, book):
    await make_vehicle()
    booking = await book()

    results = await asyncio.gather(
        services.cancellation.cancel(CancellationRequest(booking.id)),
        services.cancellation.cancel(CancellationRequest(booking.id)),
        return_exceptions=True,
    )

    succeeded = [r for r in results if isinstance(r, CancellationModel)]
    failed = [r for r in results if isinstance(r, CancellationError)]
    assert len(succeeded) == 1
    assert len(failed) == 1

    async with services.session_factory() as session:
        count = await session.scalar(
            select(func.count())
            .select_from(CancellationModel)
            .where(CancellationModel.booking_id == booking.id)
        )
    assert count == 1


async def test_departed_ride_cannot_be_cancelled(services, make_vehicle, book):
    await make_vehicle()
    booking = await book()
    async with services.session_factory() as session:
        group = await session.get(RideGroupModel, booking.ride_group_id)
        group.actual_departure_time = booking.requested_pickup_time
        await session.commit()

    with pytest.raises(CancellationError) as exc:
        await services.cancellation.cancel(CancellationRequest(booking.id))
    assert exc.value.error_code == "RIDE_IN_PROGRESS"

    assert (await services.grouping.get_booking(booking.id)).status == BookingStatus.CONFIRMED
    async with services.session_factory() as session:
        assert await CancellationRepository(session).get_by_booking(booking.id) is None


async def test_ungrouped_pending_booking(services, make_passenger, places):
    passenger = await make_passenger()
    async with services.session_factory() as session:
        booking = await BookingRepository(session).create(
            BookingModel(
                passenger_id=passenger.id,
                pickup_lat=places.colaba.latitude,
                pickup_lng=places.colaba.longitude,
                pickup_cell=h3_cell(places.colaba),
                dropoff_lat=places.airport.latitude,
                dropoff_lng=places.airport.longitude,
                requested_pickup_time=services.cancellation.clock(),
            )
        )
        await session.commit()

    cancellation = await services.cancellation.cancel(
        CancellationRequest(booking.id, initiated_by="SYSTEM")
    )

    assert cancellation.cancellation_fee == Decimal("0.00")
    assert cancellation.refund_amount == Decimal("0.00")
    assert cancellation.triggered_rebalance is False
    assert cancellation.initiated_by == "SYSTEM"
    assert services.reactor.queue.empty()


async def test_unknown_booking(services):
    with pytest.raises(ResourceNotFoundError, match="Booking not found with id: 404"):
        await services.cancellation.cancel(CancellationRequest(404))


async def test_can_cancel(services, make_vehicle, book):
    await make_vehicle()
    booking = await book()
    assert await services.cancellation.can_cancel(booking.id)

    await services.cancellation.cancel(CancellationRequest(booking.id))
    assert not await services.cancellation.can_cancel(booking.id)
    assert not await services.cancellation.can_cancel(999)


async def test_fee_without_fare(services):
    booking = BookingModel(requested_pickup_time=services.cancellation.clock())
    assert services.cancellation.calculate_fee(booking, services.cancellation.clock()) == 0
    assert services.cancellation.calculate_refund(booking, Decimal("0")) == 0
