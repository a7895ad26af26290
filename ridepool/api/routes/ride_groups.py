"""
Ride group endpoints
====================

GET  /api/v1/ride-groups/{id}             -- group with members and route
POST /api/v1/ride-groups/{id}/rebalance   -- queue a rebalance (202 Accepted)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from ridepool.api.dependencies import get_grouping, get_reactor
from ridepool.api.middleware import RATE_LIMIT, limiter
from ridepool.api.schemas import (
    RebalanceAcceptedResponse,
    RebalanceCreateRequest,
    RideGroupResponse,
)
from ridepool.services.grouping import RideGroupingService
from ridepool.workers.rebalancer import RebalanceReactor

router = APIRouter(prefix="/ride-groups", tags=["ride-groups"])


@router.get("/{group_id}", response_model=RideGroupResponse, summary="Get a ride group")
@limiter.limit(RATE_LIMIT)
async def get_group(
    request: Request,
    group_id: int,
    grouping: RideGroupingService = Depends(get_grouping),
):
    return await grouping.get_group(group_id)


@router.post(
    "/{group_id}/rebalance",
    status_code=202,
    response_model=RebalanceAcceptedResponse,
    summary="Request a rebalance",
)
@limiter.limit(RATE_LIMIT)
async def rebalance_group(
    request: Request,
    group_id: int,
    body: Optional[RebalanceCreateRequest] = None,
    grouping: RideGroupingService = Depends(get_grouping),
    reactor: RebalanceReactor = Depends(get_reactor),
):
    await grouping.get_group(group_id)
    reason = body.reason if body else RebalanceCreateRequest().reason
    reactor.submit(group_id, reason)
    return RebalanceAcceptedResponse(ride_group_id=group_id, reason=reason)
