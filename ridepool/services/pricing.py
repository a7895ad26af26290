"""
Pricing engine
==============

Binds the pricing pipeline to persisted configuration and live demand.

* ``quote``   -- authoritative fare for a grouped booking, computed inside
  the caller's unit of work with the real co-passenger count.
* ``estimate`` -- pre-booking breakdown using the time-of-day co-passenger
  guess.
* ``current_surge_multiplier`` -- memoized for ``surge_cache_ttl_seconds``;
  booking confirmation, cancellation and config writes invalidate it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridepool.domain.distance import distance
from ridepool.domain.entities import Location
from ridepool.domain.enums import DEMAND_STATUSES, VehicleClass
from ridepool.domain.pricing import (
    PricingConfigSnapshot,
    PricingContext,
    PricingPipeline,
    SharedRideDiscount,
    SurgePricing,
    estimate_co_passengers,
    money,
)
from ridepool.infrastructure.models import PricingConfigModel
from ridepool.infrastructure.repositories import BookingRepository, PricingConfigRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FareQuote:
    base_fare: Decimal
    final_fare: Decimal
    sharing_discount: Decimal
    surge_multiplier: float


@dataclass(frozen=True)
class FareEstimate:
    base_fare: Decimal
    distance_charge: Decimal
    booking_fee: Decimal
    surge_charge: Decimal
    estimated_sharing_discount: Decimal
    estimated_total_fare: Decimal
    surge_multiplier: float
    estimated_distance_km: float
    estimated_co_passengers: int
    message: str


class SurgeCache:
    """Single memoized surge multiplier with a time-to-live."""

    def __init__(self, ttl_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Optional[float] = None
        self._expires_at = 0.0

    def get(self) -> Optional[float]:
        if self._value is None or self._clock() >= self._expires_at:
            return None
        return self._value

    def put(self, value: float) -> None:
        self._value = value
        self._expires_at = self._clock() + self.ttl_seconds

    def invalidate(self) -> None:
        self._value = None


class PricingEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        surge_cache: Optional[SurgeCache] = None,
    ):
        self.session_factory = session_factory
        self.surge_cache = surge_cache or SurgeCache()

    # ── Configuration ─────────────────────────────────────────────────

    async def load_config(self, session: AsyncSession) -> PricingConfigSnapshot:
        values: dict[tuple[str, str], Decimal] = {}
        for config in await PricingConfigRepository(session).list_active():
            lookup = (config.category, config.config_key)
            if lookup in values:
                continue  # lower priority value already taken
            numeric = config.numeric_value
            if numeric is None:
                try:
                    numeric = Decimal(config.config_value)
                except ArithmeticError:
                    continue
            values[lookup] = Decimal(numeric)
        return PricingConfigSnapshot(values)

    async def list_configs(self) -> list[PricingConfigModel]:
        async with self.session_factory() as session:
            return await PricingConfigRepository(session).list_active()

    async def update_config(
        self,
        category: str,
        key: str,
        value: str,
        *,
        description: Optional[str] = None,
        priority: int = 0,
    ) -> PricingConfigModel:
        async with self.session_factory() as session:
            config = await PricingConfigRepository(session).upsert(
                category.upper(), key.upper(), value,
                description=description, priority=priority,
            )
            await session.commit()
        logger.info("Pricing config %s.%s set to %s", config.category, config.config_key, value)
        self.invalidate_surge()
        return config

    # ── Fares ─────────────────────────────────────────────────────────

    async def quote(
        self,
        session: AsyncSession,
        *,
        distance_km: float,
        request_time: datetime,
        vehicle_class: Optional[VehicleClass],
        co_passengers: int,
    ) -> FareQuote:
        config = await self.load_config(session)
        context = PricingContext(
            distance_km=distance_km,
            request_time=request_time,
            vehicle_class=_class_name(vehicle_class),
            estimated_co_passengers=co_passengers,
            active_bookings_count=await BookingRepository(session).count_by_statuses(
                DEMAND_STATUSES
            ),
        )
        steps = dict(PricingPipeline.default(config).trace(context))
        final = steps[SharedRideDiscount.name]
        before_discount = _before(steps, SharedRideDiscount.name)
        return FareQuote(
            base_fare=steps["BASE_FARE"],
            final_fare=final,
            sharing_discount=money(before_discount - final),
            surge_multiplier=context.surge_multiplier,
        )

    async def estimate(
        self,
        *,
        pickup: Location,
        dropoff: Location,
        pickup_time: datetime,
        vehicle_class: Optional[VehicleClass] = None,
    ) -> FareEstimate:
        distance_km = distance(pickup, dropoff)
        async with self.session_factory() as session:
            config = await self.load_config(session)
            active = await BookingRepository(session).count_by_statuses(DEMAND_STATUSES)

        context = PricingContext(
            distance_km=distance_km,
            request_time=pickup_time,
            vehicle_class=_class_name(vehicle_class),
            estimated_co_passengers=estimate_co_passengers(pickup_time),
            active_bookings_count=active,
        )
        total = PricingPipeline.default(config).run(context)
        logger.info(
            "Fare estimate %.2f km -> %s (surge %.1f)", distance_km, total, context.surge_multiplier
        )

        per_km = config.numeric("BASE_FARE", "PER_KM_RATE", "15.00")
        booking_fee = config.numeric("BASE_FARE", "BOOKING_FEE", "25.00")
        distance_charge = money(per_km * Decimal(str(distance_km)))
        base_fare = booking_fee + distance_charge

        surge_charge = Decimal("0")
        if context.surge_multiplier > 1.0:
            surge_charge = money(base_fare * Decimal(str(context.surge_multiplier - 1.0)))

        discount = Decimal("0")
        if context.estimated_co_passengers > 0:
            rate = Decimal("0.05") * context.estimated_co_passengers
            discount = money(total * rate)

        return FareEstimate(
            base_fare=base_fare,
            distance_charge=distance_charge,
            booking_fee=booking_fee,
            surge_charge=surge_charge,
            estimated_sharing_discount=discount,
            estimated_total_fare=total,
            surge_multiplier=context.surge_multiplier,
            estimated_distance_km=distance_km,
            estimated_co_passengers=context.estimated_co_passengers,
            message=pricing_message(context.surge_multiplier, context.estimated_co_passengers),
        )

    # ── Surge ─────────────────────────────────────────────────────────

    async def current_surge_multiplier(self) -> float:
        cached = self.surge_cache.get()
        if cached is not None:
            return cached

        async with self.session_factory() as session:
            config = await self.load_config(session)
            active = await BookingRepository(session).count_by_statuses(DEMAND_STATUSES)

        multiplier = float(SurgePricing(config).multiplier_for(active))
        self.surge_cache.put(multiplier)
        logger.debug("Surge recomputed: %d active bookings -> %.1f", active, multiplier)
        return multiplier

    def invalidate_surge(self) -> None:
        self.surge_cache.invalidate()


def pricing_message(surge_multiplier: float, co_passengers: int) -> str:
    message = ""
    if surge_multiplier > 1.5:
        message += "High demand - surge pricing in effect. "
    elif surge_multiplier > 1.0:
        message += "Moderate demand. "

    if co_passengers > 0:
        message += f"Share your ride and save up to {co_passengers * 5}%!"
    else:
        message += "Book now for best rates."
    return message


def _class_name(vehicle_class: Optional[VehicleClass]) -> str:
    if vehicle_class is None:
        return VehicleClass.SEDAN.value
    return VehicleClass(vehicle_class).value


def _before(steps: dict[str, Decimal], stage_name: str) -> Decimal:
    names = list(steps)
    index = names.index(stage_name)
    return steps[names[index - 1]] if index else Decimal("0")
