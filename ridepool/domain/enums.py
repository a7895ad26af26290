"""Domain enumerations and state-transition rules."""

import enum


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


# State machine: maps current status -> set of valid next statuses
BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
        BookingStatus.EXPIRED,
    },
    BookingStatus.CONFIRMED: {
        BookingStatus.IN_PROGRESS,
        BookingStatus.CANCELLED,
        BookingStatus.EXPIRED,
    },
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.EXPIRED: set(),
}

CANCELLABLE_BOOKING_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED}
)

# Bookings that still hold a seat in their group
ACTIVE_MEMBER_STATUSES = frozenset(
    {BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS}
)

# Bookings counted as system-wide demand for surge pricing
DEMAND_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS}
)


class RideGroupStatus(str, enum.Enum):
    FORMING = "FORMING"
    LOCKED = "LOCKED"
    DISPATCHED = "DISPATCHED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


RIDE_GROUP_TRANSITIONS: dict[RideGroupStatus, set[RideGroupStatus]] = {
    RideGroupStatus.FORMING: {RideGroupStatus.LOCKED, RideGroupStatus.CANCELLED},
    # groups emptied before departure are cancelled rather than driven
    RideGroupStatus.LOCKED: {RideGroupStatus.DISPATCHED, RideGroupStatus.CANCELLED},
    RideGroupStatus.DISPATCHED: {RideGroupStatus.IN_PROGRESS, RideGroupStatus.CANCELLED},
    RideGroupStatus.IN_PROGRESS: {RideGroupStatus.COMPLETED},
    RideGroupStatus.COMPLETED: set(),
    RideGroupStatus.CANCELLED: set(),
}

TERMINAL_GROUP_STATUSES = frozenset(
    {RideGroupStatus.COMPLETED, RideGroupStatus.CANCELLED}
)


class VehicleStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    ASSIGNED = "ASSIGNED"
    EN_ROUTE = "EN_ROUTE"
    ON_TRIP = "ON_TRIP"
    OFFLINE = "OFFLINE"


class VehicleClass(str, enum.Enum):
    SEDAN = "SEDAN"
    SUV = "SUV"
    VAN = "VAN"
    PREMIUM_SEDAN = "PREMIUM_SEDAN"

    @property
    def max_passengers(self) -> int:
        return _CLASS_LIMITS[self][0]

    @property
    def max_luggage_count(self) -> int:
        return _CLASS_LIMITS[self][1]

    @property
    def max_luggage_weight_kg(self) -> float:
        return _CLASS_LIMITS[self][2]


# passengers, luggage pieces, luggage kg
_CLASS_LIMITS: dict[VehicleClass, tuple[int, int, float]] = {
    VehicleClass.SEDAN: (4, 3, 100.0),
    VehicleClass.SUV: (6, 5, 150.0),
    VehicleClass.VAN: (8, 8, 200.0),
    VehicleClass.PREMIUM_SEDAN: (4, 3, 100.0),
}
