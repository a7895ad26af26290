"""Unit tests for the pricing pipeline and pricing engine."""

from datetime import datetime
from decimal import Decimal

import pytest

from ridepool.domain.pricing import (
    BaseFarePricing,
    PricingConfigSnapshot,
    PricingContext,
    PricingPipeline,
    SharedRideDiscount,
    SurgePricing,
    VehicleClassMultiplier,
    estimate_co_passengers,
    money,
)
from ridepool.services.pricing import SurgeCache, pricing_message

MORNING = datetime(2026, 3, 2, 8, 30)


def _context(**fields) -> PricingContext:
    fields.setdefault("request_time", MORNING)
    return PricingContext(**fields)


class TestPipeline:
    def setup_method(self):
        self.pipeline = PricingPipeline.default()

    def test_ten_km_with_two_co_passengers(self):
        steps = dict(self.pipeline.trace(_context(distance_km=10.0, estimated_co_passengers=2)))
        assert steps["BASE_FARE"] == Decimal("175.00")  # 25 + 10 x 15
        assert steps["SHARED_RIDE_DISCOUNT"] == Decimal("157.50")  # 10 % off

    def test_minimum_fare(self):
        fare = self.pipeline.run(_context(distance_km=2.0))
        assert fare == Decimal("100.00")

    def test_solo_rider_pays_full(self):
        assert self.pipeline.run(_context(distance_km=10.0)) == Decimal("175.00")

    def test_discount_is_capped(self):
        fare = self.pipeline.run(_context(distance_km=10.0, estimated_co_passengers=10))
        assert fare == Decimal("131.25")  # 25 % cap

    def test_surge_then_discount(self):
        context = _context(distance_km=10.0, estimated_co_passengers=2, active_bookings_count=60)
        assert self.pipeline.run(context) == Decimal("189.00")  # 175 x 1.2 x 0.9
        assert context.surge_multiplier == pytest.approx(1.2)

    def test_class_multiplier_from_config(self):
        config = PricingConfigSnapshot({("CAB_TYPE", "SUV_MULTIPLIER"): Decimal("1.5")})
        pipeline = PricingPipeline.default(config)
        assert pipeline.run(_context(distance_km=10.0, vehicle_class="SUV")) == Decimal("262.50")
        assert pipeline.run(_context(distance_km=10.0, vehicle_class="SEDAN")) == Decimal("175.00")

    def test_stages_sorted_by_priority(self):
        config = PricingConfigSnapshot()
        pipeline = PricingPipeline(
            stage(config)
            for stage in (SharedRideDiscount, VehicleClassMultiplier, BaseFarePricing, SurgePricing)
        )
        names = [name for name, _ in pipeline.trace(_context(distance_km=5.0))]
        assert names == [
            "BASE_FARE",
            "SURGE_PRICING",
            "VEHICLE_CLASS_MULTIPLIER",
            "SHARED_RIDE_DISCOUNT",
        ]

    def test_empty_pipeline(self):
        assert PricingPipeline([]).run(_context()) == Decimal("0.00")


class TestSurgeTiers:
    @pytest.mark.parametrize(
        "active, expected",
        [(0, "1.0"), (49, "1.0"), (50, "1.2"), (99, "1.2"), (100, "1.5"), (199, "1.5"), (200, "2.0"), (5000, "2.0")],
    )
    def test_default_tiers(self, active, expected):
        assert SurgePricing(PricingConfigSnapshot()).multiplier_for(active) == Decimal(expected)

    def test_high_tier_capped(self):
        config = PricingConfigSnapshot({("SURGE", "HIGH_SURGE_MULTIPLIER"): Decimal("3.0")})
        assert SurgePricing(config).multiplier_for(500) == Decimal("2.0")

    def test_thresholds_from_config(self):
        config = PricingConfigSnapshot({("SURGE", "LOW_DEMAND_THRESHOLD"): Decimal("5")})
        assert SurgePricing(config).multiplier_for(5) == Decimal("1.2")


class TestHelpers:
    def test_money_rounds_half_up(self):
        assert money(Decimal("2.665")) == Decimal("2.67")
        assert money(Decimal("2.675")) == Decimal("2.68")
        assert money(Decimal("2.664")) == Decimal("2.66")

    @pytest.mark.parametrize(
        "hour, expected",
        [(3, 0), (6, 2), (8, 2), (10, 2), (11, 1), (16, 1), (17, 2), (21, 2), (22, 0)],
    )
    def test_co_passenger_estimate(self, hour, expected):
        assert estimate_co_passengers(MORNING.replace(hour=hour)) == expected

    def test_discount_rate(self):
        discount = SharedRideDiscount(PricingConfigSnapshot())
        assert discount.discount_rate(0) == Decimal("0")
        assert discount.discount_rate(3) == Decimal("0.15")
        assert discount.discount_rate(6) == Decimal("0.25")

    def test_messages(self):
        assert pricing_message(1.0, 0) == "Book now for best rates."
        assert pricing_message(1.2, 1) == "Moderate demand. Share your ride and save up to 5%!"
        assert pricing_message(2.0, 2).startswith("High demand - surge pricing in effect. ")


class TestSurgeCache:
    def test_expires_after_ttl(self):
        now = [100.0]
        cache = SurgeCache(ttl_seconds=30, clock=lambda: now[0])
        assert cache.get() is None
        cache.put(1.5)
        now[0] += 29
        assert cache.get() == 1.5
        now[0] += 1
        assert cache.get() is None

    def test_invalidate(self):
        cache = SurgeCache()
        cache.put(1.2)
        cache.invalidate()
        assert cache.get() is None


# ── PricingEngine (database backed) ───────────────────────────────────


@pytest.mark.asyncio
class TestPricingEngine:
    async def test_quote_matches_pipeline(self, services):
        async with services.session_factory() as session:
            quote = await services.pricing.quote(
                session,
                distance_km=10.0,
                request_time=MORNING,
                vehicle_class=None,
                co_passengers=2,
            )
        assert quote.base_fare == Decimal("175.00")
        assert quote.final_fare == Decimal("157.50")
        assert quote.sharing_discount == Decimal("17.50")
        assert quote.surge_multiplier == 1.0

    async def test_estimate_breakdown(self, services, places):
        estimate = await services.pricing.estimate(
            pickup=places.colaba, dropoff=places.airport, pickup_time=MORNING
        )
        assert estimate.estimated_distance_km == pytest.approx(21.2, abs=0.5)
        assert estimate.booking_fee == Decimal("25.00")
        assert estimate.base_fare == estimate.booking_fee + estimate.distance_charge
        assert estimate.surge_charge == Decimal("0")
        assert estimate.estimated_co_passengers == 2
        assert estimate.message == "Share your ride and save up to 10%!"
        assert estimate.estimated_total_fare < estimate.base_fare

    async def test_config_update_invalidates_surge(self, services):
        assert await services.pricing.current_surge_multiplier() == 1.0

        await services.pricing.update_config("surge", "low_demand_threshold", "0")
        assert await services.pricing.current_surge_multiplier() == 1.2

    async def test_lowest_priority_value_wins(self, services):
        await services.pricing.update_config("BASE_FARE", "PER_KM_RATE", "20", priority=5)
        await services.pricing.update_config("BASE_FARE", "PER_KM_RATE", "10", priority=1)
        async with services.session_factory() as session:
            config = await services.pricing.load_config(session)
        assert config.numeric("BASE_FARE", "PER_KM_RATE", "15") == Decimal("10")

    async def test_upsert_replaces_value(self, services):
        await services.pricing.update_config("DISCOUNT", "MAX_SHARING_DISCOUNT", "0.30")
        await services.pricing.update_config("DISCOUNT", "MAX_SHARING_DISCOUNT", "0.20")
        configs = await services.pricing.list_configs()
        assert [c.config_value for c in configs] == ["0.20"]
