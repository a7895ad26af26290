"""
Admin / observability endpoints
===============================

GET /api/v1/admin/forming-groups -- ride groups still accepting bookings
GET /api/v1/admin/health         -- health check with reactor state and idle fleet size
"""

from fastapi import APIRouter, Depends, Request

from ridepool.api.dependencies import get_fleet, get_grouping, get_reactor
from ridepool.api.middleware import RATE_LIMIT, limiter
from ridepool.api.schemas import HealthResponse, RideGroupResponse
from ridepool.domain.enums import VehicleStatus
from ridepool.services.fleet import FleetService
from ridepool.services.grouping import RideGroupingService
from ridepool.workers.rebalancer import RebalanceReactor

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/forming-groups",
    response_model=list[RideGroupResponse],
    summary="List forming ride groups with their bookings",
)
@limiter.limit(RATE_LIMIT)
async def get_forming_groups(
    request: Request,
    grouping: RideGroupingService = Depends(get_grouping),
):
    return await grouping.forming_groups()


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(
    reactor: RebalanceReactor = Depends(get_reactor),
    fleet: FleetService = Depends(get_fleet),
):
    return HealthResponse(
        rebalance_reactor_running=reactor.running,
        pending_rebalances=reactor.queue.qsize(),
        available_vehicles=await fleet.count_by_status(VehicleStatus.AVAILABLE),
    )
