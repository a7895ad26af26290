"""
Ride Grouping Orchestrator
==========================

Turns a ride request into a confirmed booking inside a ride group.

Flow per request
----------------
1. Resolve the passenger; tolerance and vehicle class default to the
   passenger profile.
2. Ask the matching strategies, in ascending priority, for candidate
   groups; the first strategy that returns anything wins and its top
   candidate is used.
3. Attach to that group under ``ride-group:{id}`` (re-read, re-checked),
   or claim a vehicle under ``vehicle:{id}`` and open a new FORMING group
   whose destination is the booking's dropoff.
4. Re-sequence the group's pickups (nearest neighbour), number them
   1..k, confirm and price the booking.

Each attempt runs in its own unit of work and commits before its lock is
released.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Any, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridepool.domain.distance import distance, h3_cell
from ridepool.domain.entities import MatchCandidate, RideRequest, as_naive_utc
from ridepool.domain.enums import (
    TERMINAL_GROUP_STATUSES,
    BookingStatus,
    RideGroupStatus,
    VehicleClass,
    VehicleStatus,
)
from ridepool.domain.errors import NoVehicleAvailableError, ResourceNotFoundError
from ridepool.domain.routing import encode_route, plan_route
from ridepool.infrastructure.locks import LockService, ride_group_key, vehicle_key
from ridepool.infrastructure.models import BookingModel, RideGroupModel
from ridepool.infrastructure.repositories import (
    BookingRepository,
    PassengerRepository,
    RideGroupRepository,
    VehicleRepository,
)
from ridepool.services.matching import RideMatchingStrategy
from ridepool.services.pricing import PricingEngine

logger = logging.getLogger(__name__)

FALLBACK_VEHICLE_CANDIDATES = 5


class RideGroupingService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        strategies: Sequence[RideMatchingStrategy],
        pricing: PricingEngine,
        locks: LockService,
        *,
        proximity_radius_km: float = 5.0,
        average_speed_kmh: float = 30.0,
        h3_resolution: int = 7,
    ):
        self.session_factory = session_factory
        self.strategies = sorted(strategies, key=lambda s: s.priority)
        self.pricing = pricing
        self.locks = locks
        self.proximity_radius_km = proximity_radius_km
        self.average_speed_kmh = average_speed_kmh
        self.h3_resolution = h3_resolution

    # ── Commands ──────────────────────────────────────────────────────

    async def request_ride(self, request: RideRequest) -> BookingModel:
        async with self.session_factory() as session:
            if request.idempotency_key:
                existing = await BookingRepository(session).get_by_idempotency_key(
                    request.idempotency_key
                )
                if existing is not None:
                    logger.info(
                        "Idempotent replay %s -> booking %s", request.idempotency_key, existing.id
                    )
                    return existing

            passenger = await PassengerRepository(session).get_by_id(request.passenger_id)
            if passenger is None:
                raise ResourceNotFoundError("Passenger", request.passenger_id)

        request = replace(
            request,
            requested_pickup_time=as_naive_utc(request.requested_pickup_time),
            max_detour_tolerance=request.tolerance(passenger.detour_tolerance),
            preferred_vehicle_class=(
                request.preferred_vehicle_class or passenger.preferred_vehicle_class
            ),
        )
        try:
            return await self._place(request, self._booking_fields(request))
        except IntegrityError:
            if not request.idempotency_key:
                raise
            # a concurrent request with the same key committed first
            async with self.session_factory() as session:
                existing = await BookingRepository(session).get_by_idempotency_key(
                    request.idempotency_key
                )
            if existing is None:
                raise
            logger.info(
                "Idempotency key %s raced; returning booking %s",
                request.idempotency_key, existing.id,
            )
            return existing

    def resequence(self, group: RideGroupModel) -> None:
        """Nearest-neighbour pickup order, sequence numbers and ETAs."""
        members = list(group.bookings)
        if not members:
            group.optimized_route = None
            group.total_distance_km = 0.0
            group.estimated_arrival_time = None
            return

        plan = plan_route([b.pickup_location for b in members], group.destination)
        departure = group.scheduled_departure_time

        for sequence, index in enumerate(plan.pickup_order, start=1):
            booking = members[index]
            booking.pickup_sequence = sequence
            booking.actual_distance_km = plan.remaining_km[index]
            if departure is not None:
                booking.estimated_pickup_time = departure + self._travel_time(
                    plan.offset_km[index]
                )

        group.optimized_route = encode_route([members[i].id for i in plan.pickup_order])
        group.total_distance_km = plan.total_distance_km
        if departure is not None:
            group.estimated_arrival_time = departure + self._travel_time(plan.total_distance_km)
        logger.debug(
            "Group %s route %s (%.2f km)", group.id, group.optimized_route, group.total_distance_km
        )

    def remove_from_group(self, group: RideGroupModel, booking: BookingModel) -> None:
        """
        Detach *booking*; re-sequence the rest or cancel the emptied group.

        Caller holds ``ride-group:{id}`` and commits.
        """
        group.remove_booking(booking)
        self.resequence(group)
        if not group.bookings and RideGroupStatus(group.status) not in TERMINAL_GROUP_STATUSES:
            group.cancel()
            logger.info("Group %s emptied and cancelled; vehicle released", group.id)

    # ── Queries ───────────────────────────────────────────────────────

    async def find_matches(self, request: RideRequest) -> list[MatchCandidate]:
        for strategy in self.strategies:
            candidates = await strategy.find_matches(request)
            if candidates:
                logger.debug("%s produced %d candidates", strategy.name, len(candidates))
                return candidates
        return []

    async def find_compatible_bookings(self, booking_id: int) -> list[BookingModel]:
        booking = await self.get_booking(booking_id)
        for strategy in self.strategies:
            compatible = await strategy.find_compatible_bookings(booking)
            if compatible:
                return compatible
        return []

    async def get_booking(self, booking_id: int) -> BookingModel:
        async with self.session_factory() as session:
            booking = await BookingRepository(session).get_by_id(booking_id)
        if booking is None:
            raise ResourceNotFoundError("Booking", booking_id)
        return booking

    async def bookings_for_passenger(
        self, passenger_id: int, *, active_only: bool = False
    ) -> list[BookingModel]:
        async with self.session_factory() as session:
            if await PassengerRepository(session).get_by_id(passenger_id) is None:
                raise ResourceNotFoundError("Passenger", passenger_id)
            repo = BookingRepository(session)
            if active_only:
                return await repo.list_active_by_passenger(passenger_id)
            return await repo.list_by_passenger(passenger_id)

    async def bookings_page(
        self, passenger_id: int, *, page: int = 0, size: int = 20
    ) -> tuple[list[BookingModel], int]:
        """One page of a passenger's bookings, newest first, plus the total count."""
        async with self.session_factory() as session:
            if await PassengerRepository(session).get_by_id(passenger_id) is None:
                raise ResourceNotFoundError("Passenger", passenger_id)
            repo = BookingRepository(session)
            items = await repo.page_by_passenger(passenger_id, offset=page * size, limit=size)
            return items, await repo.count_by_passenger(passenger_id)

    async def get_group(self, group_id: int) -> RideGroupModel:
        async with self.session_factory() as session:
            group = await RideGroupRepository(session).get_by_id(group_id)
        if group is None:
            raise ResourceNotFoundError("RideGroup", group_id)
        return group

    async def group_for_booking(self, booking_id: int) -> RideGroupModel:
        booking = await self.get_booking(booking_id)
        if booking.ride_group_id is None:
            raise ResourceNotFoundError("RideGroup for booking", booking_id)
        return await self.get_group(booking.ride_group_id)

    async def forming_groups(self) -> list[RideGroupModel]:
        async with self.session_factory() as session:
            return await RideGroupRepository(session).list_by_status(RideGroupStatus.FORMING)

    # ── Internals ─────────────────────────────────────────────────────

    async def _top_candidate(self, request: RideRequest) -> Optional[MatchCandidate]:
        candidates = await self.find_matches(request)
        if candidates and candidates[0].meets_all_constraints:
            return candidates[0]
        return None

    async def _place(self, request: RideRequest, fields: dict[str, Any]) -> BookingModel:
        candidate = await self._top_candidate(request)
        if candidate is not None:
            booking = await self._attach(candidate.ride_group.id, fields)
            if booking is not None:
                return booking
            logger.info(
                "Group %s no longer fits booking for passenger %s; opening a new group",
                candidate.ride_group.id, request.passenger_id,
            )

        return await self._open_group(request, fields)

    async def _attach(self, group_id: int, fields: dict[str, Any]) -> Optional[BookingModel]:
        async with self.locks.hold(ride_group_key(group_id)):
            async with self.session_factory() as session:
                group = await RideGroupRepository(session).get_by_id_for_update(group_id)
                booking = BookingModel(**fields)
                if group is None or not group.can_add_booking(booking):
                    return None

                await BookingRepository(session).create(booking)
                group.add_booking(booking)
                self.resequence(group)
                await self._confirm(session, group, booking)
                await session.commit()

        logger.info(
            "Booking %s joined group %s (%d passengers)",
            booking.id, group_id, group.total_passengers,
        )
        return booking

    async def _open_group(self, request: RideRequest, fields: dict[str, Any]) -> BookingModel:
        # preferred class within 2x radius, then any class within 3x radius
        tried: set[int] = set()
        for preferred_only in (True, False):
            vehicle_ids = await self._candidate_vehicles(request, preferred_only, exclude=tried)
            for vehicle_id in vehicle_ids:
                tried.add(vehicle_id)
                booking = await self._claim_and_open(vehicle_id, request, fields)
                if booking is not None:
                    return booking

        raise NoVehicleAvailableError()

    async def _claim_and_open(
        self, vehicle_id: int, request: RideRequest, fields: dict[str, Any]
    ) -> Optional[BookingModel]:
        async with self.locks.hold(vehicle_key(vehicle_id)):
            async with self.session_factory() as session:
                vehicle = await VehicleRepository(session).get_by_id_for_update(vehicle_id)
                if vehicle is None or VehicleStatus(vehicle.status) != VehicleStatus.AVAILABLE:
                    logger.debug("Vehicle %s taken meanwhile, trying next", vehicle_id)
                    return None
                if not vehicle.has_capacity_for(request.passenger_count, request.luggage_weight_kg):
                    return None

                booking = await BookingRepository(session).create(BookingModel(**fields))
                group = await RideGroupRepository(session).create(
                    RideGroupModel(
                        vehicle=vehicle,
                        vehicle_id=vehicle.id,
                        destination_lat=request.dropoff.latitude,
                        destination_lng=request.dropoff.longitude,
                        destination_address=request.dropoff.address,
                        scheduled_departure_time=request.requested_pickup_time,
                        direct_distance_km=booking.direct_distance_km,
                    )
                )
                vehicle.assign()
                group.add_booking(booking)
                self.resequence(group)
                await self._confirm(session, group, booking)
                await session.commit()

        logger.info("Booking %s opened group %s with vehicle %s", booking.id, group.id, vehicle_id)
        return booking

    async def _candidate_vehicles(
        self, request: RideRequest, preferred_only: bool, exclude: set[int]
    ) -> list[int]:
        async with self.session_factory() as session:
            repo = VehicleRepository(session)
            if preferred_only:
                vehicles = await repo.find_nearby(
                    request.pickup,
                    self.proximity_radius_km * 2,
                    resolution=self.h3_resolution,
                    vehicle_class=VehicleClass(
                        request.preferred_vehicle_class or VehicleClass.SEDAN
                    ),
                    min_seats=request.passenger_count,
                    min_luggage_kg=request.luggage_weight_kg,
                )
            else:
                vehicles = await repo.find_nearby(
                    request.pickup,
                    self.proximity_radius_km * 3,
                    resolution=self.h3_resolution,
                )
        fresh = [v.id for v in vehicles if v.id not in exclude]
        return fresh[:FALLBACK_VEHICLE_CANDIDATES]

    async def _confirm(
        self, session: AsyncSession, group: RideGroupModel, booking: BookingModel
    ) -> None:
        booking.transition_to(BookingStatus.CONFIRMED)
        quote = await self.pricing.quote(
            session,
            distance_km=booking.direct_distance_km or 0.0,
            request_time=booking.requested_pickup_time,
            vehicle_class=group.vehicle.vehicle_class if group.vehicle else booking.vehicle_class,
            co_passengers=len(group.bookings) - 1,
        )
        booking.base_fare = quote.base_fare
        booking.final_fare = quote.final_fare
        booking.sharing_discount = quote.sharing_discount
        booking.surge_multiplier = quote.surge_multiplier
        self.pricing.invalidate_surge()

    def _booking_fields(self, request: RideRequest) -> dict[str, Any]:
        return dict(
            passenger_id=request.passenger_id,
            status=BookingStatus.PENDING,
            pickup_lat=request.pickup.latitude,
            pickup_lng=request.pickup.longitude,
            pickup_address=request.pickup.address,
            pickup_cell=h3_cell(request.pickup, self.h3_resolution),
            dropoff_lat=request.dropoff.latitude,
            dropoff_lng=request.dropoff.longitude,
            dropoff_address=request.dropoff.address,
            requested_pickup_time=request.requested_pickup_time,
            passenger_count=request.passenger_count,
            luggage_weight_kg=request.luggage_weight_kg,
            luggage_count=request.luggage_count,
            max_detour_tolerance=request.max_detour_tolerance,
            vehicle_class=(
                VehicleClass(request.preferred_vehicle_class)
                if request.preferred_vehicle_class
                else None
            ),
            special_requirements=request.special_requirements,
            direct_distance_km=distance(request.pickup, request.dropoff),
            idempotency_key=request.idempotency_key,
        )

    def _travel_time(self, km: float) -> timedelta:
        return timedelta(hours=km / self.average_speed_kmh)
