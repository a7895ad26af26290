"""
SQLAlchemy ORM models.

Tables
------
* ``passengers``       -- registered passengers and their pooling profile
* ``vehicles``         -- fleet with class-derived capacity limits
* ``bookings``         -- individual ride requests
* ``ride_groups``      -- shared rides (one vehicle, many bookings)
* ``cancellations``    -- audit record, one per cancelled booking
* ``pricing_configs``  -- category/key pricing knobs

Coordinates are stored as plain floats next to an H3 cell string; the
cell columns carry the B-Tree index used by proximity queries.

Ownership
---------
A ``RideGroupModel`` owns its membership list and aggregate totals.  A
booking only carries ``ride_group_id`` for look-ups; joining and leaving
always go through ``RideGroupModel.add_booking`` / ``remove_booking``.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from .database import Base
from ridepool.domain.entities import Location, check_transition, utcnow
from ridepool.domain.enums import (
    BOOKING_TRANSITIONS,
    RIDE_GROUP_TRANSITIONS,
    BookingStatus,
    RideGroupStatus,
    VehicleClass,
    VehicleStatus,
)
from ridepool.domain.errors import ConstraintViolationError


def _enum(enum_cls):
    return Enum(enum_cls, native_enum=False, length=20)


class PassengerModel(Base):
    __tablename__ = "passengers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(32), nullable=True)
    detour_tolerance = Column(Float, default=0.20, nullable=False)
    preferred_vehicle_class = Column(_enum(VehicleClass), nullable=True)
    rating = Column(Float, default=5.0, nullable=False)
    total_rides = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    license_plate = Column(String(20), unique=True, nullable=False)
    driver_name = Column(String(120), nullable=False)
    driver_phone = Column(String(32), nullable=True)
    vehicle_class = Column(_enum(VehicleClass), default=VehicleClass.SEDAN, nullable=False)
    status = Column(_enum(VehicleStatus), default=VehicleStatus.AVAILABLE, nullable=False)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    location_cell = Column(String(20), nullable=True)
    remaining_seats = Column(Integer, nullable=False)
    remaining_luggage_kg = Column(Float, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_vehicles_status", "status"),
        Index("idx_vehicles_cell", "location_cell"),
    )

    def __init__(self, **kwargs):
        vehicle_class = VehicleClass(kwargs.setdefault("vehicle_class", VehicleClass.SEDAN))
        kwargs.setdefault("status", VehicleStatus.AVAILABLE)
        kwargs.setdefault("remaining_seats", vehicle_class.max_passengers)
        kwargs.setdefault("remaining_luggage_kg", vehicle_class.max_luggage_weight_kg)
        super().__init__(**kwargs)

    @property
    def location(self) -> Optional[Location]:
        if self.current_lat is None or self.current_lng is None:
            return None
        return Location(self.current_lat, self.current_lng)

    def move_to(self, location: Location, cell: str) -> None:
        self.current_lat = location.latitude
        self.current_lng = location.longitude
        self.location_cell = cell

    def has_capacity_for(self, passengers: int, luggage_kg: float) -> bool:
        return self.remaining_seats >= passengers and self.remaining_luggage_kg >= luggage_kg

    def sync_capacity(self, passengers: int, luggage_kg: float) -> None:
        """Mirror an assigned group's totals as remaining headroom."""
        limits = VehicleClass(self.vehicle_class)
        self.remaining_seats = max(0, limits.max_passengers - passengers)
        self.remaining_luggage_kg = max(0.0, limits.max_luggage_weight_kg - luggage_kg)

    def assign(self) -> None:
        self.status = VehicleStatus.ASSIGNED

    def release(self) -> None:
        """Back to AVAILABLE with full class capacity."""
        self.status = VehicleStatus.AVAILABLE
        self.sync_capacity(0, 0.0)


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    passenger_id = Column(Integer, ForeignKey("passengers.id"), nullable=False)
    ride_group_id = Column(Integer, ForeignKey("ride_groups.id"), nullable=True)
    status = Column(_enum(BookingStatus), default=BookingStatus.PENDING, nullable=False)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    pickup_address = Column(String(255), nullable=True)
    pickup_cell = Column(String(20), nullable=True)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    dropoff_address = Column(String(255), nullable=True)

    requested_pickup_time = Column(DateTime, nullable=False)
    estimated_pickup_time = Column(DateTime, nullable=True)
    actual_pickup_time = Column(DateTime, nullable=True)

    passenger_count = Column(Integer, default=1, nullable=False)
    luggage_weight_kg = Column(Float, default=0.0, nullable=False)
    luggage_count = Column(Integer, default=0, nullable=False)
    max_detour_tolerance = Column(Float, default=0.20, nullable=False)
    vehicle_class = Column(_enum(VehicleClass), nullable=True)
    special_requirements = Column(String(500), nullable=True)

    direct_distance_km = Column(Float, nullable=True)
    actual_distance_km = Column(Float, nullable=True)
    pickup_sequence = Column(Integer, nullable=True)

    base_fare = Column(Numeric(10, 2), nullable=True)
    final_fare = Column(Numeric(10, 2), nullable=True)
    sharing_discount = Column(Numeric(10, 2), nullable=True)
    surge_multiplier = Column(Float, nullable=True)

    idempotency_key = Column(String(64), unique=True, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_bookings_status", "status"),
        Index("idx_bookings_passenger", "passenger_id"),
        Index("idx_bookings_group", "ride_group_id"),
        Index("idx_bookings_pickup_cell", "pickup_cell"),
        Index("idx_bookings_pickup_time", "requested_pickup_time"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("status", BookingStatus.PENDING)
        kwargs.setdefault("passenger_count", 1)
        kwargs.setdefault("luggage_weight_kg", 0.0)
        kwargs.setdefault("luggage_count", 0)
        kwargs.setdefault("max_detour_tolerance", 0.20)
        super().__init__(**kwargs)

    @property
    def pickup_location(self) -> Location:
        return Location(self.pickup_lat, self.pickup_lng, self.pickup_address)

    @property
    def dropoff_location(self) -> Location:
        return Location(self.dropoff_lat, self.dropoff_lng, self.dropoff_address)

    def transition_to(self, status: BookingStatus) -> None:
        check_transition(BookingStatus(self.status), status, BOOKING_TRANSITIONS)
        self.status = status

    def exceeds_detour_tolerance(self) -> bool:
        """Advisory: routed distance vs direct distance against own tolerance."""
        if not self.direct_distance_km or self.actual_distance_km is None:
            return False
        detour = (self.actual_distance_km - self.direct_distance_km) / self.direct_distance_km
        return detour > self.max_detour_tolerance


class RideGroupModel(Base):
    __tablename__ = "ride_groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)
    status = Column(_enum(RideGroupStatus), default=RideGroupStatus.FORMING, nullable=False)

    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)
    destination_address = Column(String(255), nullable=True)

    scheduled_departure_time = Column(DateTime, nullable=True)
    actual_departure_time = Column(DateTime, nullable=True)
    estimated_arrival_time = Column(DateTime, nullable=True)

    total_passengers = Column(Integer, default=0, nullable=False)
    total_luggage_weight_kg = Column(Float, default=0.0, nullable=False)
    optimized_route = Column(String(1000), nullable=True)
    total_distance_km = Column(Float, default=0.0, nullable=False)
    direct_distance_km = Column(Float, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    vehicle = relationship("VehicleModel", lazy="selectin")
    bookings = relationship(
        "BookingModel", lazy="selectin", order_by="BookingModel.id"
    )

    __table_args__ = (
        Index("idx_ride_groups_status", "status"),
        Index("idx_ride_groups_departure", "scheduled_departure_time"),
        Index("idx_ride_groups_vehicle", "vehicle_id"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("status", RideGroupStatus.FORMING)
        kwargs.setdefault("total_passengers", 0)
        kwargs.setdefault("total_luggage_weight_kg", 0.0)
        kwargs.setdefault("total_distance_km", 0.0)
        # initialised collection, so a freshly flushed group never lazy-loads
        kwargs.setdefault("bookings", [])
        super().__init__(**kwargs)

    @property
    def destination(self) -> Location:
        return Location(self.destination_lat, self.destination_lng, self.destination_address)

    # ── Membership ────────────────────────────────────────────────────

    def can_add_booking(self, booking: BookingModel) -> bool:
        return not self._capacity_violations(booking)

    def _capacity_violations(self, booking: BookingModel) -> list[str]:
        if RideGroupStatus(self.status) != RideGroupStatus.FORMING:
            return [f"Ride group {self.id} is {RideGroupStatus(self.status).value}, not FORMING"]
        if self.vehicle is None:
            return [f"Ride group {self.id} has no vehicle"]

        limits = VehicleClass(self.vehicle.vehicle_class)
        violations = []
        if self.total_passengers + booking.passenger_count > limits.max_passengers:
            violations.append(
                f"Passenger capacity exceeded: {self.total_passengers + booking.passenger_count}"
                f" > {limits.max_passengers}"
            )
        luggage = self.total_luggage_weight_kg + (booking.luggage_weight_kg or 0.0)
        if luggage > limits.max_luggage_weight_kg:
            violations.append(
                f"Luggage capacity exceeded: {luggage:g}kg > {limits.max_luggage_weight_kg:g}kg"
            )
        return violations

    def add_booking(self, booking: BookingModel) -> None:
        violations = self._capacity_violations(booking)
        if violations:
            raise ConstraintViolationError("; ".join(violations))
        self.bookings.append(booking)
        booking.ride_group_id = self.id
        self.recalculate_totals()

    def remove_booking(self, booking: BookingModel) -> None:
        if booking in self.bookings:
            self.bookings.remove(booking)
        booking.ride_group_id = None
        booking.pickup_sequence = None
        self.recalculate_totals()

    def recalculate_totals(self, members: Optional[list[BookingModel]] = None) -> None:
        members = self.bookings if members is None else members
        self.total_passengers = sum(b.passenger_count for b in members)
        self.total_luggage_weight_kg = sum(b.luggage_weight_kg or 0.0 for b in members)
        if self.vehicle is not None and VehicleStatus(self.vehicle.status) != VehicleStatus.AVAILABLE:
            self.vehicle.sync_capacity(self.total_passengers, self.total_luggage_weight_kg)

    # ── Lifecycle ─────────────────────────────────────────────────────

    def transition_to(self, status: RideGroupStatus) -> None:
        check_transition(RideGroupStatus(self.status), status, RIDE_GROUP_TRANSITIONS)
        self.status = status

    def cancel(self) -> None:
        """Cancel and hand the vehicle back to the pool."""
        self.transition_to(RideGroupStatus.CANCELLED)
        if self.vehicle is not None:
            self.vehicle.release()

    def detour_percentage(self) -> float:
        if not self.direct_distance_km:
            return 0.0
        return (self.total_distance_km - self.direct_distance_km) / self.direct_distance_km


class CancellationModel(Base):
    __tablename__ = "cancellations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)
    cancelled_at = Column(DateTime, default=utcnow, nullable=False)
    reason = Column(String(500), nullable=True)
    initiated_by = Column(String(20), default="PASSENGER", nullable=False)
    cancellation_fee = Column(Numeric(10, 2), nullable=False)
    refund_amount = Column(Numeric(10, 2), nullable=False)
    triggered_rebalance = Column(Boolean, default=False, nullable=False)
    affected_ride_group_id = Column(Integer, nullable=True)


class PricingConfigModel(Base):
    __tablename__ = "pricing_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    category = Column(String(50), nullable=False)
    config_key = Column(String(100), nullable=False)
    config_value = Column(String(255), nullable=False)
    numeric_value = Column(Numeric(12, 4), nullable=True)
    description = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_pricing_configs_lookup", "category", "config_key"),
    )
