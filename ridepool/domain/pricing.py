"""
Dynamic Pricing Pipeline  (Strategy Pattern, chained)
=====================================================

Formula
-------
Fare = max(BookingFee + Distance x PerKmRate, MinimumFare)
       x Surge_Multiplier x VehicleClass_Multiplier x (1 - Sharing_Discount)

Stages run in ascending ``priority`` over a running fare; each stage
rounds its output half-up to 2 decimal places, so the pipeline is
order-sensitive by construction.

* **Surge_Multiplier** is tiered on the system-wide active-booking count
  (defaults: <50 -> 1.0, <100 -> 1.2, <200 -> 1.5, else 2.0, capped 2.0).
* **Sharing_Discount** = min(5 % x co-passengers, 25 %).

Configuration is read through ``PricingConfigSnapshot`` keyed by
``(category, key)`` with literal fallbacks.

Complexity: O(stages) per calculation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
MAX_SURGE = Decimal("2.0")


def money(value: Decimal) -> Decimal:
    """Round half-up to cents."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _dec(value: float | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ── Configuration ─────────────────────────────────────────────────────


class PricingConfigSnapshot:
    """Immutable view over active pricing knobs."""

    def __init__(self, values: Optional[Mapping[tuple[str, str], Decimal]] = None):
        self._values = dict(values or {})

    def numeric(self, category: str, key: str, default: str | Decimal) -> Decimal:
        value = self._values.get((category, key))
        return value if value is not None else _dec(default)


# ── Context ───────────────────────────────────────────────────────────


@dataclass
class PricingContext:
    distance_km: float = 0.0
    request_time: datetime = field(default_factory=datetime.now)
    vehicle_class: str = "SEDAN"
    estimated_co_passengers: int = 0
    active_bookings_count: int = 0
    surge_multiplier: float = 1.0
    is_airport_ride: bool = True


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    name: str
    priority: int

    def __init__(self, config: PricingConfigSnapshot):
        self.config = config

    @abstractmethod
    def calculate_fare(
        self, current_fare: Decimal, context: PricingContext
    ) -> Decimal: ...


class BaseFarePricing(PricingStrategy):
    name = "BASE_FARE"
    priority = 1

    def calculate_fare(self, current_fare, context):
        per_km = self.config.numeric("BASE_FARE", "PER_KM_RATE", "15.00")
        booking_fee = self.config.numeric("BASE_FARE", "BOOKING_FEE", "25.00")
        minimum = self.config.numeric("BASE_FARE", "MINIMUM_FARE", "100.00")

        fare = booking_fee + per_km * _dec(context.distance_km)
        if fare < minimum:
            fare = minimum
        logger.debug(
            "Base fare %s (distance %.3f km, per km %s)", fare, context.distance_km, per_km
        )
        return money(fare)


class SurgePricing(PricingStrategy):
    name = "SURGE_PRICING"
    priority = 2

    def multiplier_for(self, active_bookings: int) -> Decimal:
        low = self.config.numeric("SURGE", "LOW_DEMAND_THRESHOLD", "50")
        medium = self.config.numeric("SURGE", "MEDIUM_DEMAND_THRESHOLD", "100")
        high = self.config.numeric("SURGE", "HIGH_DEMAND_THRESHOLD", "200")

        if active_bookings < low:
            return Decimal("1.0")
        if active_bookings < medium:
            return self.config.numeric("SURGE", "LOW_SURGE_MULTIPLIER", "1.2")
        if active_bookings < high:
            return self.config.numeric("SURGE", "MEDIUM_SURGE_MULTIPLIER", "1.5")
        return min(
            self.config.numeric("SURGE", "HIGH_SURGE_MULTIPLIER", "2.0"), MAX_SURGE
        )

    def calculate_fare(self, current_fare, context):
        multiplier = self.multiplier_for(context.active_bookings_count)
        context.surge_multiplier = float(multiplier)
        logger.debug("Surge applied: %s x %s", current_fare, multiplier)
        return money(current_fare * multiplier)


class VehicleClassMultiplier(PricingStrategy):
    name = "VEHICLE_CLASS_MULTIPLIER"
    priority = 3

    def calculate_fare(self, current_fare, context):
        vehicle_class = (context.vehicle_class or "SEDAN").upper()
        multiplier = self.config.numeric("CAB_TYPE", f"{vehicle_class}_MULTIPLIER", "1")
        return money(current_fare * multiplier)


class SharedRideDiscount(PricingStrategy):
    name = "SHARED_RIDE_DISCOUNT"
    priority = 10

    def discount_rate(self, co_passengers: int) -> Decimal:
        if co_passengers <= 0:
            return Decimal("0")
        per_person = self.config.numeric("DISCOUNT", "PER_COPASSENGER_DISCOUNT", "0.05")
        cap = self.config.numeric("DISCOUNT", "MAX_SHARING_DISCOUNT", "0.25")
        return min(per_person * co_passengers, cap)

    def calculate_fare(self, current_fare, context):
        rate = self.discount_rate(context.estimated_co_passengers)
        if rate == 0:
            return current_fare
        logger.debug(
            "Sharing discount: %d co-passengers, %s off",
            context.estimated_co_passengers, rate,
        )
        return money(current_fare * (Decimal("1") - rate))


DEFAULT_STAGES = (BaseFarePricing, SurgePricing, VehicleClassMultiplier, SharedRideDiscount)


# ── Pipeline ──────────────────────────────────────────────────────────


class PricingPipeline:
    """Applies a set of stages in priority order to a running fare."""

    def __init__(self, stages: Iterable[PricingStrategy]):
        self.stages = sorted(stages, key=lambda s: s.priority)

    @classmethod
    def default(cls, config: Optional[PricingConfigSnapshot] = None) -> "PricingPipeline":
        config = config or PricingConfigSnapshot()
        return cls(stage(config) for stage in DEFAULT_STAGES)

    def trace(self, context: PricingContext) -> list[tuple[str, Decimal]]:
        """Running fare after each stage, in application order."""
        fare = Decimal("0")
        steps = []
        for stage in self.stages:
            fare = stage.calculate_fare(fare, context)
            steps.append((stage.name, fare))
        return steps

    def run(self, context: PricingContext) -> Decimal:
        steps = self.trace(context)
        return money(steps[-1][1]) if steps else Decimal("0.00")


def estimate_co_passengers(pickup_time: datetime) -> int:
    """Time-of-day guess used for fare *estimates* only."""
    hour = pickup_time.hour
    if 6 <= hour <= 10 or 17 <= hour <= 21:
        return 2
    if 10 <= hour <= 17:
        return 1
    return 0
