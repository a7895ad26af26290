"""Passenger registry."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridepool.domain.errors import (
    ConstraintViolationError,
    DuplicateResourceError,
    ResourceNotFoundError,
)
from ridepool.infrastructure.models import PassengerModel
from ridepool.infrastructure.repositories import BookingRepository, PassengerRepository

logger = logging.getLogger(__name__)


class PassengerService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def register(self, **fields: Any) -> PassengerModel:
        async with self.session_factory() as session:
            passenger = await PassengerRepository(session).create(PassengerModel(**fields))
            await session.commit()
        logger.info("Registered passenger %s", passenger.id)
        return passenger

    async def get(self, passenger_id: int) -> PassengerModel:
        async with self.session_factory() as session:
            passenger = await PassengerRepository(session).get_by_id(passenger_id)
        if passenger is None:
            raise ResourceNotFoundError("Passenger", passenger_id)
        return passenger

    async def get_by_email(self, email: str) -> PassengerModel:
        async with self.session_factory() as session:
            passenger = await PassengerRepository(session).get_by_email(email)
        if passenger is None:
            raise ResourceNotFoundError("Passenger", email)
        return passenger

    async def list_all(self) -> list[PassengerModel]:
        async with self.session_factory() as session:
            return await PassengerRepository(session).list_all()

    async def update(self, passenger_id: int, **changes: Any) -> PassengerModel:
        async with self.session_factory() as session:
            repo = PassengerRepository(session)
            passenger = await repo.get_by_id(passenger_id)
            if passenger is None:
                raise ResourceNotFoundError("Passenger", passenger_id)

            email = changes.get("email")
            if email and email != passenger.email and await repo.get_by_email(email):
                raise DuplicateResourceError(f"Passenger with email {email} already exists")

            for field, value in changes.items():
                setattr(passenger, field, value)
            await session.commit()
        return passenger

    async def delete(self, passenger_id: int) -> None:
        async with self.session_factory() as session:
            repo = PassengerRepository(session)
            passenger = await repo.get_by_id(passenger_id)
            if passenger is None:
                raise ResourceNotFoundError("Passenger", passenger_id)
            if await BookingRepository(session).count_by_passenger(passenger_id):
                raise ConstraintViolationError(
                    f"Passenger {passenger_id} has bookings and cannot be deleted"
                )
            await repo.delete(passenger)
            await session.commit()
        logger.info("Deleted passenger %s", passenger_id)
