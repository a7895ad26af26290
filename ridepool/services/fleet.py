"""Vehicle registry: registration, look-ups and externally driven updates."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridepool.domain.distance import h3_cell
from ridepool.domain.entities import Location
from ridepool.domain.enums import (
    TERMINAL_GROUP_STATUSES,
    RideGroupStatus,
    VehicleClass,
    VehicleStatus,
)
from ridepool.domain.errors import ConstraintViolationError, ResourceNotFoundError
from ridepool.infrastructure.locks import LockService, vehicle_key
from ridepool.infrastructure.models import VehicleModel
from ridepool.infrastructure.repositories import RideGroupRepository, VehicleRepository

logger = logging.getLogger(__name__)

DELETABLE_STATUSES = frozenset({VehicleStatus.AVAILABLE, VehicleStatus.OFFLINE})


class FleetService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: LockService,
        *,
        h3_resolution: int = 7,
    ):
        self.session_factory = session_factory
        self.locks = locks
        self.h3_resolution = h3_resolution

    async def register_vehicle(
        self,
        *,
        license_plate: str,
        driver_name: str,
        driver_phone: str | None = None,
        vehicle_class: VehicleClass = VehicleClass.SEDAN,
        location: Location | None = None,
    ) -> VehicleModel:
        vehicle = VehicleModel(
            license_plate=license_plate,
            driver_name=driver_name,
            driver_phone=driver_phone,
            vehicle_class=VehicleClass(vehicle_class),
        )
        if location is not None:
            vehicle.move_to(location, h3_cell(location, self.h3_resolution))

        async with self.session_factory() as session:
            await VehicleRepository(session).create(vehicle)
            await session.commit()
        logger.info("Registered vehicle %s (%s)", vehicle.id, vehicle.license_plate)
        return vehicle

    async def get_vehicle(self, vehicle_id: int) -> VehicleModel:
        async with self.session_factory() as session:
            vehicle = await VehicleRepository(session).get_by_id(vehicle_id)
        if vehicle is None:
            raise ResourceNotFoundError("Vehicle", vehicle_id)
        return vehicle

    async def get_by_license_plate(self, license_plate: str) -> VehicleModel:
        async with self.session_factory() as session:
            vehicle = await VehicleRepository(session).get_by_license_plate(license_plate)
        if vehicle is None:
            raise ResourceNotFoundError("Vehicle", license_plate)
        return vehicle

    async def available_vehicles(
        self, vehicle_class: VehicleClass | None = None
    ) -> list[VehicleModel]:
        async with self.session_factory() as session:
            return await VehicleRepository(session).get_available(vehicle_class)

    async def count_by_status(self, status: VehicleStatus) -> int:
        async with self.session_factory() as session:
            return await VehicleRepository(session).count_by_status(status)

    async def nearby_vehicles(self, location: Location, radius_km: float) -> list[VehicleModel]:
        async with self.session_factory() as session:
            return await VehicleRepository(session).find_nearby(
                location, radius_km, resolution=self.h3_resolution
            )

    async def update_location(self, vehicle_id: int, location: Location) -> VehicleModel:
        async with self.locks.hold(vehicle_key(vehicle_id)):
            async with self.session_factory() as session:
                vehicle = await VehicleRepository(session).get_by_id_for_update(vehicle_id)
                if vehicle is None:
                    raise ResourceNotFoundError("Vehicle", vehicle_id)
                vehicle.move_to(location, h3_cell(location, self.h3_resolution))
                await session.commit()
        logger.debug("Vehicle %s moved to (%.5f, %.5f)", vehicle_id, location.latitude, location.longitude)
        return vehicle

    async def update_status(self, vehicle_id: int, status: VehicleStatus) -> VehicleModel:
        async with self.locks.hold(vehicle_key(vehicle_id)):
            async with self.session_factory() as session:
                vehicle = await VehicleRepository(session).get_by_id_for_update(vehicle_id)
                if vehicle is None:
                    raise ResourceNotFoundError("Vehicle", vehicle_id)
                if VehicleStatus(status) == VehicleStatus.AVAILABLE:
                    vehicle.release()
                else:
                    vehicle.status = VehicleStatus(status)
                await session.commit()
        logger.info("Vehicle %s is now %s", vehicle_id, VehicleStatus(status).value)
        return vehicle

    async def delete_vehicle(self, vehicle_id: int) -> None:
        """
        Remove a vehicle from the fleet.

        Refused while the vehicle serves a non-terminal ride group or is
        not AVAILABLE / OFFLINE.  Finished groups keep their history with
        the vehicle reference cleared.
        """
        async with self.locks.hold(vehicle_key(vehicle_id)):
            async with self.session_factory() as session:
                repo = VehicleRepository(session)
                vehicle = await repo.get_by_id_for_update(vehicle_id)
                if vehicle is None:
                    raise ResourceNotFoundError("Vehicle", vehicle_id)

                groups = await RideGroupRepository(session).list_by_vehicle(vehicle_id)
                active = [
                    g for g in groups if RideGroupStatus(g.status) not in TERMINAL_GROUP_STATUSES
                ]
                if active:
                    raise ConstraintViolationError(
                        f"Vehicle {vehicle_id} is assigned to active ride group {active[0].id}"
                    )
                if VehicleStatus(vehicle.status) not in DELETABLE_STATUSES:
                    raise ConstraintViolationError(
                        f"Vehicle {vehicle_id} is {VehicleStatus(vehicle.status).value} "
                        "and cannot be deleted"
                    )

                for group in groups:
                    group.vehicle = None
                    group.vehicle_id = None
                await repo.delete(vehicle)
                await session.commit()
        logger.info("Deleted vehicle %s", vehicle_id)
