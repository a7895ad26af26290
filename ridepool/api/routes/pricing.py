"""
Pricing endpoints
=================

POST /api/v1/pricing/estimate   -- fare estimate with breakdown
GET  /api/v1/pricing/surge      -- current surge multiplier
GET  /api/v1/pricing/configs    -- active pricing knobs
PUT  /api/v1/pricing/configs    -- create or update a knob
"""

from fastapi import APIRouter, Depends, Request

from ridepool.api.dependencies import get_pricing
from ridepool.api.middleware import RATE_LIMIT, limiter
from ridepool.api.schemas import (
    FareEstimateRequest,
    FareEstimateResponse,
    PricingConfigResponse,
    PricingConfigUpdateRequest,
    SurgeResponse,
)
from ridepool.services.pricing import PricingEngine

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.post("/estimate", response_model=FareEstimateResponse, summary="Estimate a fare")
@limiter.limit(RATE_LIMIT)
async def estimate_fare(
    request: Request,
    body: FareEstimateRequest,
    pricing: PricingEngine = Depends(get_pricing),
):
    return await pricing.estimate(
        pickup=body.pickup,
        dropoff=body.dropoff,
        pickup_time=body.requested_pickup_time,
        vehicle_class=body.preferred_vehicle_class,
    )


@router.get("/surge", response_model=SurgeResponse, summary="Current surge multiplier")
@limiter.limit(RATE_LIMIT)
async def current_surge(
    request: Request,
    pricing: PricingEngine = Depends(get_pricing),
):
    multiplier = await pricing.current_surge_multiplier()
    return SurgeResponse(
        surge_multiplier=multiplier,
        surge_percentage=round((multiplier - 1.0) * 100, 2),
        surge_active=multiplier > 1.0,
    )


@router.get("/configs", response_model=list[PricingConfigResponse], summary="Pricing configs")
@limiter.limit(RATE_LIMIT)
async def list_configs(
    request: Request,
    pricing: PricingEngine = Depends(get_pricing),
):
    return await pricing.list_configs()


@router.put("/configs", response_model=PricingConfigResponse, summary="Set a pricing config")
@limiter.limit(RATE_LIMIT)
async def update_config(
    request: Request,
    body: PricingConfigUpdateRequest,
    pricing: PricingEngine = Depends(get_pricing),
):
    return await pricing.update_config(
        body.category,
        body.key,
        body.value,
        description=body.description,
        priority=body.priority,
    )
