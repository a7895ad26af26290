"""
Ride endpoints
==============

POST /api/v1/rides                   -- book a shared ride (grouped synchronously)
GET  /api/v1/rides/{id}              -- booking status, sequence and fare
GET  /api/v1/rides/{id}/group        -- the ride group the booking belongs to
GET  /api/v1/rides/{id}/compatible   -- pending bookings that could share with it
"""

from fastapi import APIRouter, Depends, Request

from ridepool.api.dependencies import get_grouping
from ridepool.api.middleware import RATE_LIMIT, limiter
from ridepool.api.schemas import BookingResponse, RideCreateRequest, RideGroupResponse
from ridepool.services.grouping import RideGroupingService

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Book a shared ride",
    description=(
        "Matches the request into a forming ride group or opens a new one, "
        "sequences the pickups and prices the booking.  Replaying the same "
        "idempotency_key returns the original booking."
    ),
)
@limiter.limit(RATE_LIMIT)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    grouping: RideGroupingService = Depends(get_grouping),
):
    return await grouping.request_ride(body.to_domain())


@router.get("/{booking_id}", response_model=BookingResponse, summary="Get a booking")
@limiter.limit(RATE_LIMIT)
async def get_ride(
    request: Request,
    booking_id: int,
    grouping: RideGroupingService = Depends(get_grouping),
):
    return await grouping.get_booking(booking_id)


@router.get(
    "/{booking_id}/group", response_model=RideGroupResponse, summary="Ride group of a booking"
)
@limiter.limit(RATE_LIMIT)
async def get_ride_group(
    request: Request,
    booking_id: int,
    grouping: RideGroupingService = Depends(get_grouping),
):
    return await grouping.group_for_booking(booking_id)


@router.get(
    "/{booking_id}/compatible",
    response_model=list[BookingResponse],
    summary="Compatible pending bookings",
)
@limiter.limit(RATE_LIMIT)
async def compatible_rides(
    request: Request,
    booking_id: int,
    grouping: RideGroupingService = Depends(get_grouping),
):
    return await grouping.find_compatible_bookings(booking_id)
