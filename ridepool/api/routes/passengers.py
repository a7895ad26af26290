"""
Passenger endpoints
===================

POST   /api/v1/passengers                      -- register a passenger
GET    /api/v1/passengers                      -- list passengers
GET    /api/v1/passengers/email/{email}        -- passenger profile by email
GET    /api/v1/passengers/{id}                 -- passenger profile
PUT    /api/v1/passengers/{id}                 -- update profile
DELETE /api/v1/passengers/{id}                 -- delete (refused while bookings exist)
GET    /api/v1/passengers/{id}/rides           -- all bookings
GET    /api/v1/passengers/{id}/rides/paginated -- bookings page, newest first
GET    /api/v1/passengers/{id}/rides/active    -- pending / confirmed / in-progress bookings
"""

import math

from fastapi import APIRouter, Depends, Query, Request, Response

from ridepool.api.dependencies import get_grouping, get_passengers
from ridepool.api.middleware import RATE_LIMIT, limiter
from ridepool.api.schemas import (
    BookingPageResponse,
    BookingResponse,
    PassengerCreateRequest,
    PassengerResponse,
    PassengerUpdateRequest,
)
from ridepool.services.grouping import RideGroupingService
from ridepool.services.passengers import PassengerService

router = APIRouter(prefix="/passengers", tags=["passengers"])


@router.post(
    "",
    status_code=201,
    response_model=PassengerResponse,
    summary="Register a passenger",
)
@limiter.limit(RATE_LIMIT)
async def register_passenger(
    request: Request,
    body: PassengerCreateRequest,
    passengers: PassengerService = Depends(get_passengers),
):
    return await passengers.register(**body.model_dump())


@router.get("", response_model=list[PassengerResponse], summary="List passengers")
@limiter.limit(RATE_LIMIT)
async def list_passengers(
    request: Request,
    passengers: PassengerService = Depends(get_passengers),
):
    return await passengers.list_all()


@router.get(
    "/email/{email}", response_model=PassengerResponse, summary="Get a passenger by email"
)
@limiter.limit(RATE_LIMIT)
async def get_passenger_by_email(
    request: Request,
    email: str,
    passengers: PassengerService = Depends(get_passengers),
):
    return await passengers.get_by_email(email)


@router.get("/{passenger_id}", response_model=PassengerResponse, summary="Get a passenger")
@limiter.limit(RATE_LIMIT)
async def get_passenger(
    request: Request,
    passenger_id: int,
    passengers: PassengerService = Depends(get_passengers),
):
    return await passengers.get(passenger_id)


@router.put("/{passenger_id}", response_model=PassengerResponse, summary="Update a passenger")
@limiter.limit(RATE_LIMIT)
async def update_passenger(
    request: Request,
    passenger_id: int,
    body: PassengerUpdateRequest,
    passengers: PassengerService = Depends(get_passengers),
):
    return await passengers.update(passenger_id, **body.model_dump(exclude_unset=True))


@router.delete("/{passenger_id}", status_code=204, summary="Delete a passenger")
@limiter.limit(RATE_LIMIT)
async def delete_passenger(
    request: Request,
    passenger_id: int,
    passengers: PassengerService = Depends(get_passengers),
):
    await passengers.delete(passenger_id)
    return Response(status_code=204)


@router.get(
    "/{passenger_id}/rides",
    response_model=list[BookingResponse],
    summary="All bookings of a passenger",
)
@limiter.limit(RATE_LIMIT)
async def passenger_rides(
    request: Request,
    passenger_id: int,
    grouping: RideGroupingService = Depends(get_grouping),
):
    return await grouping.bookings_for_passenger(passenger_id)


@router.get(
    "/{passenger_id}/rides/active",
    response_model=list[BookingResponse],
    summary="Active bookings of a passenger",
)
@limiter.limit(RATE_LIMIT)
async def passenger_active_rides(
    request: Request,
    passenger_id: int,
    grouping: RideGroupingService = Depends(get_grouping),
):
    return await grouping.bookings_for_passenger(passenger_id, active_only=True)


@router.get(
    "/{passenger_id}/rides/paginated",
    response_model=BookingPageResponse,
    summary="Bookings of a passenger, one page at a time",
)
@limiter.limit(RATE_LIMIT)
async def passenger_rides_paginated(
    request: Request,
    passenger_id: int,
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    grouping: RideGroupingService = Depends(get_grouping),
):
    items, total = await grouping.bookings_page(passenger_id, page=page, size=size)
    return BookingPageResponse(
        items=[BookingResponse.model_validate(b) for b in items],
        page=page,
        size=size,
        total=total,
        total_pages=math.ceil(total / size),
    )
