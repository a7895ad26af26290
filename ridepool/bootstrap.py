"""
Service wiring.

Builds the object graph once per process: session factory, lock backend,
pricing engine, ordered matching strategies, orchestrator, cancellation
workflow and rebalance reactor.  Tests call ``build_services`` with their
own session factory and an ``InMemoryLockService``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ridepool.config import Settings, settings as default_settings
from ridepool.infrastructure.database import build_engine, build_session_factory
from ridepool.infrastructure.locks import InMemoryLockService, LockService, RedisLockService
from ridepool.infrastructure.redis_client import create_redis
from ridepool.services.cancellation import CancellationService
from ridepool.services.fleet import FleetService
from ridepool.services.grouping import RideGroupingService
from ridepool.services.matching import (
    ConstraintBasedClusteringStrategy,
    GreedyNearestNeighborStrategy,
)
from ridepool.services.passengers import PassengerService
from ridepool.services.pricing import PricingEngine, SurgeCache
from ridepool.workers.rebalancer import RebalanceReactor


@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    locks: LockService
    pricing: PricingEngine
    grouping: RideGroupingService
    cancellation: CancellationService
    reactor: RebalanceReactor
    fleet: FleetService
    passengers: PassengerService
    engine: Optional[AsyncEngine] = None

    async def close(self) -> None:
        await self.reactor.stop()
        await self.locks.close()
        if self.engine is not None:
            await self.engine.dispose()


def build_lock_service(config: Settings) -> LockService:
    if config.lock_backend == "memory":
        return InMemoryLockService(config.lock_wait_seconds, config.lock_lease_seconds)
    return RedisLockService(
        create_redis(config.redis_url), config.lock_wait_seconds, config.lock_lease_seconds
    )


def build_services(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    locks: Optional[LockService] = None,
    config: Optional[Settings] = None,
) -> Services:
    config = config or default_settings
    engine = None
    if session_factory is None:
        engine = build_engine(config.database_url)
        session_factory = build_session_factory(engine)
    locks = locks or build_lock_service(config)

    matching_options = dict(
        proximity_radius_km=config.proximity_radius_km,
        time_window_minutes=config.time_window_minutes,
        default_detour_tolerance=config.default_detour_tolerance,
        h3_resolution=config.h3_resolution,
    )
    strategies = [
        GreedyNearestNeighborStrategy(
            session_factory, max_candidate_groups=config.max_candidate_groups, **matching_options
        ),
        ConstraintBasedClusteringStrategy(session_factory, **matching_options),
    ]

    pricing = PricingEngine(session_factory, SurgeCache(config.surge_cache_ttl_seconds))
    grouping = RideGroupingService(
        session_factory,
        strategies,
        pricing,
        locks,
        proximity_radius_km=config.proximity_radius_km,
        average_speed_kmh=config.average_speed_kmh,
        h3_resolution=config.h3_resolution,
    )
    reactor = RebalanceReactor(session_factory, locks, workers=config.rebalance_workers)
    cancellation = CancellationService(
        session_factory,
        grouping,
        pricing,
        locks,
        reactor,
        free_cancellation_minutes=config.free_cancellation_minutes,
        fee_fraction=config.cancellation_fee_fraction,
    )
    return Services(
        session_factory=session_factory,
        locks=locks,
        pricing=pricing,
        grouping=grouping,
        cancellation=cancellation,
        reactor=reactor,
        fleet=FleetService(session_factory, locks, h3_resolution=config.h3_resolution),
        passengers=PassengerService(session_factory),
        engine=engine,
    )
