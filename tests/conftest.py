"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) in a per-test temporary
directory so tests run without Docker / PostgreSQL / Redis.  Separate
sessions see each other's commits, which the locking and cancellation
tests depend on.  Locks use the in-process backend.
"""

from datetime import timedelta
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ridepool.bootstrap import Services, build_services
from ridepool.config import Settings
from ridepool.domain.entities import Location, RideRequest, utcnow
from ridepool.domain.enums import VehicleClass
from ridepool.infrastructure import models  # noqa: F401  (registers tables)
from ridepool.infrastructure.database import build_session_factory, create_schema
from ridepool.infrastructure.locks import InMemoryLockService

# Chhatrapati Shivaji airport and two pickups ~1 km apart, ~21 km south
AIRPORT = Location(19.0896, 72.8656, "Terminal 2")
COLABA = Location(18.9067, 72.8147, "Colaba")
COLABA_NEARBY = Location(18.9150, 72.8200, "Cuffe Parade")
FAR_AWAY = Location(19.2183, 72.9781, "Thane")


@pytest.fixture
def places() -> SimpleNamespace:
    return SimpleNamespace(
        airport=AIRPORT, colaba=COLABA, colaba_nearby=COLABA_NEARBY, far_away=FAR_AWAY
    )


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh schema per test; disposed afterwards."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ridepool.db'}")
    await create_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        lock_backend="memory",
        lock_wait_seconds=2.0,
        rate_limit_enabled=False,
        rebalance_workers=1,
    )


@pytest.fixture
def locks(test_settings) -> InMemoryLockService:
    return InMemoryLockService(test_settings.lock_wait_seconds, test_settings.lock_lease_seconds)


@pytest_asyncio.fixture
async def services(session_factory, locks, test_settings) -> AsyncGenerator[Services, None]:
    svc = build_services(session_factory, locks, test_settings)
    yield svc
    await svc.reactor.stop()


# ── Factories ─────────────────────────────────────────────────────────


@pytest.fixture
def make_passenger(services):
    counter = {"n": 0}

    async def _make(**fields):
        counter["n"] += 1
        fields.setdefault("name", f"Passenger {counter['n']}")
        fields.setdefault("email", f"passenger{counter['n']}@example.com")
        return await services.passengers.register(**fields)

    return _make


@pytest.fixture
def make_vehicle(services):
    counter = {"n": 0}

    async def _make(location: Location = COLABA, vehicle_class=VehicleClass.SEDAN, **fields):
        counter["n"] += 1
        fields.setdefault("license_plate", f"MH01AB{1000 + counter['n']}")
        fields.setdefault("driver_name", f"Driver {counter['n']}")
        return await services.fleet.register_vehicle(
            location=location, vehicle_class=vehicle_class, **fields
        )

    return _make


@pytest.fixture
def ride_request():
    pickup_time = (utcnow() + timedelta(hours=2)).replace(microsecond=0)

    def _build(passenger_id: int, pickup: Location = COLABA, **fields) -> RideRequest:
        fields.setdefault("dropoff", AIRPORT)
        fields.setdefault("requested_pickup_time", pickup_time)
        return RideRequest(passenger_id=passenger_id, pickup=pickup, **fields)

    return _build
