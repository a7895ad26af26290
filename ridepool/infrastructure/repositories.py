"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.

Proximity queries
-----------------
Rows are pre-filtered in SQL on their H3 cell (``covering_cells`` of the
search radius) plus any time window, then cut exactly with the haversine
distance in Python and ordered nearest first.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    BookingModel,
    CancellationModel,
    PassengerModel,
    PricingConfigModel,
    RideGroupModel,
    VehicleModel,
)
from ridepool.domain.distance import covering_cells, distance
from ridepool.domain.entities import Location
from ridepool.domain.enums import (
    ACTIVE_MEMBER_STATUSES,
    DEMAND_STATUSES,
    BookingStatus,
    RideGroupStatus,
    VehicleClass,
    VehicleStatus,
)
from ridepool.domain.errors import DuplicateResourceError


class PassengerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, passenger: PassengerModel) -> PassengerModel:
        if await self.get_by_email(passenger.email):
            raise DuplicateResourceError(
                f"Passenger with email {passenger.email} already exists"
            )
        self.session.add(passenger)
        await self.session.flush()
        return passenger

    async def get_by_id(self, passenger_id: int) -> Optional[PassengerModel]:
        return await self.session.get(PassengerModel, passenger_id)

    async def get_by_email(self, email: str) -> Optional[PassengerModel]:
        result = await self.session.execute(
            select(PassengerModel).where(PassengerModel.email == email)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[PassengerModel]:
        result = await self.session.execute(
            select(PassengerModel).order_by(PassengerModel.id)
        )
        return list(result.scalars().all())

    async def delete(self, passenger: PassengerModel) -> None:
        await self.session.delete(passenger)
        await self.session.flush()


class VehicleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, vehicle: VehicleModel) -> VehicleModel:
        existing = await self.session.execute(
            select(VehicleModel.id).where(
                VehicleModel.license_plate == vehicle.license_plate
            )
        )
        if existing.first() is not None:
            raise DuplicateResourceError(
                f"Vehicle with license plate {vehicle.license_plate} already exists"
            )
        self.session.add(vehicle)
        await self.session.flush()
        return vehicle

    async def get_by_id(self, vehicle_id: int) -> Optional[VehicleModel]:
        return await self.session.get(VehicleModel, vehicle_id)

    async def get_by_id_for_update(self, vehicle_id: int) -> Optional[VehicleModel]:
        return await self.session.get(
            VehicleModel, vehicle_id, with_for_update=True, populate_existing=True
        )

    async def get_by_license_plate(self, license_plate: str) -> Optional[VehicleModel]:
        result = await self.session.execute(
            select(VehicleModel).where(VehicleModel.license_plate == license_plate)
        )
        return result.scalar_one_or_none()

    async def get_available(
        self, vehicle_class: Optional[VehicleClass] = None
    ) -> list[VehicleModel]:
        query = select(VehicleModel).where(VehicleModel.status == VehicleStatus.AVAILABLE)
        if vehicle_class is not None:
            query = query.where(VehicleModel.vehicle_class == vehicle_class)
        result = await self.session.execute(query.order_by(VehicleModel.id))
        return list(result.scalars().all())

    async def find_nearby(
        self,
        location: Location,
        radius_km: float,
        *,
        resolution: int = 7,
        status: Optional[VehicleStatus] = VehicleStatus.AVAILABLE,
        vehicle_class: Optional[VehicleClass] = None,
        min_seats: int = 0,
        min_luggage_kg: float = 0.0,
    ) -> list[VehicleModel]:
        """Vehicles within *radius_km*, nearest first."""
        query = select(VehicleModel).where(
            VehicleModel.location_cell.in_(covering_cells(location, radius_km, resolution))
        )
        if status is not None:
            query = query.where(VehicleModel.status == status)
        if vehicle_class is not None:
            query = query.where(VehicleModel.vehicle_class == vehicle_class)
        if min_seats:
            query = query.where(VehicleModel.remaining_seats >= min_seats)
        if min_luggage_kg:
            query = query.where(VehicleModel.remaining_luggage_kg >= min_luggage_kg)

        result = await self.session.execute(query)
        return _nearest(result.scalars().all(), location, radius_km, lambda v: [v.location])

    async def count_by_status(self, status: VehicleStatus) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(VehicleModel)
            .where(VehicleModel.status == status)
        )
        return result.scalar() or 0

    async def delete(self, vehicle: VehicleModel) -> None:
        await self.session.delete(vehicle)
        await self.session.flush()


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: BookingModel) -> BookingModel:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_by_id(self, booking_id: int) -> Optional[BookingModel]:
        return await self.session.get(BookingModel, booking_id)

    async def get_by_id_for_update(self, booking_id: int) -> Optional[BookingModel]:
        """SELECT ... FOR UPDATE, refreshing any copy already in the session."""
        return await self.session.get(
            BookingModel, booking_id, with_for_update=True, populate_existing=True
        )

    async def get_by_idempotency_key(self, key: str) -> Optional[BookingModel]:
        result = await self.session.execute(
            select(BookingModel).where(BookingModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def list_by_passenger(self, passenger_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.passenger_id == passenger_id)
            .order_by(BookingModel.requested_pickup_time.desc())
        )
        return list(result.scalars().all())

    async def page_by_passenger(
        self, passenger_id: int, *, offset: int, limit: int
    ) -> list[BookingModel]:
        """Newest first."""
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.passenger_id == passenger_id)
            .order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_active_by_passenger(self, passenger_id: int) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.passenger_id == passenger_id,
                BookingModel.status.in_(DEMAND_STATUSES),
            )
            .order_by(BookingModel.requested_pickup_time)
        )
        return list(result.scalars().all())

    async def count_by_passenger(self, passenger_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(BookingModel)
            .where(BookingModel.passenger_id == passenger_id)
        )
        return result.scalar() or 0

    async def count_by_statuses(self, statuses: Iterable[BookingStatus]) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(BookingModel)
            .where(BookingModel.status.in_(list(statuses)))
        )
        return result.scalar() or 0

    async def find_nearby_pending(
        self,
        location: Location,
        pickup_time: datetime,
        *,
        radius_km: float,
        window_minutes: int,
        limit: int,
        exclude_id: Optional[int] = None,
        resolution: int = 7,
    ) -> list[BookingModel]:
        """Pending bookings near *location* within the pickup-time window."""
        window = timedelta(minutes=window_minutes)
        query = select(BookingModel).where(
            BookingModel.status == BookingStatus.PENDING,
            BookingModel.pickup_cell.in_(covering_cells(location, radius_km, resolution)),
            BookingModel.requested_pickup_time.between(
                pickup_time - window, pickup_time + window
            ),
        )
        if exclude_id is not None:
            query = query.where(BookingModel.id != exclude_id)

        result = await self.session.execute(query)
        nearby = _nearest(
            result.scalars().all(), location, radius_km, lambda b: [b.pickup_location]
        )
        return nearby[:limit]


class RideGroupRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, group: RideGroupModel) -> RideGroupModel:
        self.session.add(group)
        await self.session.flush()
        return group

    async def get_by_id(self, group_id: int) -> Optional[RideGroupModel]:
        return await self.session.get(RideGroupModel, group_id)

    async def get_by_id_for_update(self, group_id: int) -> Optional[RideGroupModel]:
        """SELECT ... FOR UPDATE, reloading members and vehicle."""
        return await self.session.get(
            RideGroupModel, group_id, with_for_update=True, populate_existing=True
        )

    async def list_by_status(self, status: RideGroupStatus) -> list[RideGroupModel]:
        result = await self.session.execute(
            select(RideGroupModel)
            .where(RideGroupModel.status == status)
            .order_by(RideGroupModel.scheduled_departure_time)
        )
        return list(result.scalars().all())

    async def list_by_vehicle(self, vehicle_id: int) -> list[RideGroupModel]:
        result = await self.session.execute(
            select(RideGroupModel)
            .where(RideGroupModel.vehicle_id == vehicle_id)
            .order_by(RideGroupModel.id)
        )
        return list(result.scalars().all())

    async def find_forming_near(
        self,
        location: Location,
        departure_time: datetime,
        *,
        radius_km: float,
        window_minutes: int,
        limit: int,
        resolution: int = 7,
    ) -> list[RideGroupModel]:
        """
        FORMING groups departing within the window that have at least one
        member pickup within *radius_km*, nearest member first.
        """
        window = timedelta(minutes=window_minutes)
        query = (
            select(RideGroupModel)
            .join(BookingModel, BookingModel.ride_group_id == RideGroupModel.id)
            .where(
                RideGroupModel.status == RideGroupStatus.FORMING,
                RideGroupModel.scheduled_departure_time.between(
                    departure_time - window, departure_time + window
                ),
                BookingModel.status.in_(ACTIVE_MEMBER_STATUSES),
                BookingModel.pickup_cell.in_(
                    covering_cells(location, radius_km, resolution)
                ),
            )
            .distinct()
        )
        result = await self.session.execute(query)
        nearby = _nearest(
            result.scalars().all(),
            location,
            radius_km,
            lambda g: [b.pickup_location for b in g.bookings],
        )
        return nearby[:limit]


class CancellationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, cancellation: CancellationModel) -> CancellationModel:
        self.session.add(cancellation)
        await self.session.flush()
        return cancellation

    async def get_by_booking(self, booking_id: int) -> Optional[CancellationModel]:
        result = await self.session.execute(
            select(CancellationModel).where(CancellationModel.booking_id == booking_id)
        )
        return result.scalar_one_or_none()


class PricingConfigRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active(self) -> list[PricingConfigModel]:
        """Active knobs, lowest priority value first."""
        result = await self.session.execute(
            select(PricingConfigModel)
            .where(PricingConfigModel.is_active.is_(True))
            .order_by(
                PricingConfigModel.category,
                PricingConfigModel.config_key,
                PricingConfigModel.priority,
            )
        )
        return list(result.scalars().all())

    async def upsert(
        self,
        category: str,
        key: str,
        value: str,
        *,
        description: Optional[str] = None,
        priority: int = 0,
    ) -> PricingConfigModel:
        result = await self.session.execute(
            select(PricingConfigModel).where(
                PricingConfigModel.category == category,
                PricingConfigModel.config_key == key,
                PricingConfigModel.priority == priority,
            )
        )
        config = result.scalar_one_or_none()
        if config is None:
            config = PricingConfigModel(category=category, config_key=key, priority=priority)
            self.session.add(config)

        config.config_value = value
        config.numeric_value = _numeric_or_none(value)
        config.is_active = True
        if description is not None:
            config.description = description
        await self.session.flush()
        return config


def _numeric_or_none(value: str) -> Optional[Decimal]:
    try:
        return Decimal(value)
    except ArithmeticError:
        return None


def _nearest(rows, origin: Location, radius_km: float, points_of) -> list:
    """Keep rows with any point within *radius_km* of *origin*, nearest first."""
    scored = []
    for row in rows:
        gaps = [distance(origin, p) for p in points_of(row) if p is not None]
        if gaps and min(gaps) <= radius_km:
            scored.append((min(gaps), row.id, row))
    scored.sort(key=lambda item: (item[0], item[1]))
    return [row for _, _, row in scored]
