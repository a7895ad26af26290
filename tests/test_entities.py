"""Unit tests for model state machines and ride-group membership rules."""

import pytest

from ridepool.domain.enums import BookingStatus, RideGroupStatus, VehicleClass, VehicleStatus
from ridepool.domain.errors import ConstraintViolationError, InvalidStateTransition
from ridepool.infrastructure.models import BookingModel, RideGroupModel, VehicleModel


def _booking(**fields) -> BookingModel:
    fields.setdefault("passenger_id", 1)
    return BookingModel(
        pickup_lat=18.9067,
        pickup_lng=72.8147,
        dropoff_lat=19.0896,
        dropoff_lng=72.8656,
        **fields,
    )


def _group(vehicle_class=VehicleClass.SEDAN, **fields) -> RideGroupModel:
    vehicle = VehicleModel(license_plate="MH01AB1234", driver_name="Ravi", vehicle_class=vehicle_class)
    vehicle.assign()
    return RideGroupModel(vehicle=vehicle, destination_lat=19.0896, destination_lng=72.8656, **fields)


class TestBookingStateMachine:
    def test_initial_status_is_pending(self):
        assert _booking().status == BookingStatus.PENDING

    @pytest.mark.parametrize(
        "start, end",
        [
            (BookingStatus.PENDING, BookingStatus.CONFIRMED),
            (BookingStatus.PENDING, BookingStatus.CANCELLED),
            (BookingStatus.PENDING, BookingStatus.EXPIRED),
            (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS),
            (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
            (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED),
        ],
    )
    def test_valid_transitions(self, start, end):
        booking = _booking(status=start)
        booking.transition_to(end)
        assert booking.status == end

    @pytest.mark.parametrize(
        "start, end",
        [
            (BookingStatus.PENDING, BookingStatus.COMPLETED),
            (BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED),
            (BookingStatus.COMPLETED, BookingStatus.PENDING),
            (BookingStatus.CANCELLED, BookingStatus.CONFIRMED),
            (BookingStatus.EXPIRED, BookingStatus.PENDING),
        ],
    )
    def test_invalid_transitions(self, start, end):
        booking = _booking(status=start)
        with pytest.raises(InvalidStateTransition, match=f"from {start.value} to {end.value}"):
            booking.transition_to(end)
        assert booking.status == start


class TestRideGroupStateMachine:
    def test_lifecycle(self):
        group = _group()
        for status in (
            RideGroupStatus.LOCKED,
            RideGroupStatus.DISPATCHED,
            RideGroupStatus.IN_PROGRESS,
            RideGroupStatus.COMPLETED,
        ):
            group.transition_to(status)
        assert group.status == RideGroupStatus.COMPLETED

    def test_forming_cannot_skip_to_dispatch(self):
        with pytest.raises(InvalidStateTransition):
            _group().transition_to(RideGroupStatus.DISPATCHED)

    def test_in_progress_cannot_be_cancelled(self):
        group = _group(status=RideGroupStatus.IN_PROGRESS)
        with pytest.raises(InvalidStateTransition):
            group.cancel()

    def test_cancel_releases_vehicle(self):
        group = _group()
        group.add_booking(_booking(passenger_count=2))
        group.cancel()
        assert group.status == RideGroupStatus.CANCELLED
        assert group.vehicle.status == VehicleStatus.AVAILABLE
        assert group.vehicle.remaining_seats == 4


class TestMembership:
    def test_add_updates_totals_and_vehicle_headroom(self):
        group = _group()
        group.add_booking(_booking(passenger_count=2, luggage_weight_kg=30.0))
        group.add_booking(_booking(passenger_count=1, luggage_weight_kg=20.0))

        assert group.total_passengers == 3
        assert group.total_luggage_weight_kg == 50.0
        assert group.vehicle.remaining_seats == 1
        assert group.vehicle.remaining_luggage_kg == 50.0

    def test_exact_fit_is_accepted(self):
        group = _group()
        group.add_booking(_booking(passenger_count=3))
        assert group.can_add_booking(_booking(passenger_count=1))

    def test_cannot_exceed_seats(self):
        group = _group()
        group.add_booking(_booking(passenger_count=3))
        with pytest.raises(ConstraintViolationError, match="Passenger capacity exceeded: 5 > 4"):
            group.add_booking(_booking(passenger_count=2))
        assert group.total_passengers == 3
        assert len(group.bookings) == 1

    def test_cannot_exceed_luggage(self):
        group = _group()
        group.add_booking(_booking(luggage_weight_kg=90.0))
        assert not group.can_add_booking(_booking(luggage_weight_kg=20.0))

    def test_van_carries_more(self):
        group = _group(VehicleClass.VAN)
        group.add_booking(_booking(passenger_count=6, luggage_weight_kg=150.0))
        assert group.can_add_booking(_booking(passenger_count=2, luggage_weight_kg=50.0))

    def test_only_forming_groups_accept_bookings(self):
        group = _group(status=RideGroupStatus.LOCKED)
        with pytest.raises(ConstraintViolationError, match="not FORMING"):
            group.add_booking(_booking())

    def test_remove_recomputes_totals(self):
        group = _group()
        first = _booking(passenger_count=2, luggage_weight_kg=40.0)
        second = _booking(passenger_count=1, luggage_weight_kg=10.0)
        group.add_booking(first)
        group.add_booking(second)
        first.pickup_sequence = 1

        group.remove_booking(first)

        assert group.bookings == [second]
        assert group.total_passengers == 1
        assert group.total_luggage_weight_kg == 10.0
        assert first.ride_group_id is None
        assert first.pickup_sequence is None

    def test_detour_percentage(self):
        group = _group(direct_distance_km=20.0, total_distance_km=23.0)
        assert group.detour_percentage() == pytest.approx(0.15)
        assert _group(direct_distance_km=None).detour_percentage() == 0.0


class TestBookingDetour:
    def test_within_tolerance(self):
        booking = _booking(direct_distance_km=20.0, actual_distance_km=23.0)
        assert not booking.exceeds_detour_tolerance()

    def test_over_tolerance(self):
        booking = _booking(direct_distance_km=20.0, actual_distance_km=25.0, max_detour_tolerance=0.2)
        assert booking.exceeds_detour_tolerance()

    def test_unknown_distances(self):
        assert not _booking().exceeds_detour_tolerance()
        assert not _booking(direct_distance_km=0.0, actual_distance_km=3.0).exceeds_detour_tolerance()


class TestVehicleDefaults:
    @pytest.mark.parametrize(
        "vehicle_class, seats, luggage",
        [
            (VehicleClass.SEDAN, 4, 100.0),
            (VehicleClass.SUV, 6, 150.0),
            (VehicleClass.VAN, 8, 200.0),
            (VehicleClass.PREMIUM_SEDAN, 4, 100.0),
        ],
    )
    def test_capacity_follows_class(self, vehicle_class, seats, luggage):
        vehicle = VehicleModel(license_plate="X", driver_name="Y", vehicle_class=vehicle_class)
        assert vehicle.status == VehicleStatus.AVAILABLE
        assert vehicle.remaining_seats == seats
        assert vehicle.remaining_luggage_kg == luggage

    def test_unlocated_vehicle(self):
        assert VehicleModel(license_plate="X", driver_name="Y").location is None
