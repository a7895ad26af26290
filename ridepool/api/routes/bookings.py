"""
Booking cancellation endpoints
==============================

POST /api/v1/bookings/cancel              -- cancel a booking (fee / refund computed)
GET  /api/v1/bookings/{id}/can-cancel     -- cancellation eligibility
"""

from fastapi import APIRouter, Depends, Request

from ridepool.api.dependencies import get_cancellation
from ridepool.api.middleware import RATE_LIMIT, limiter
from ridepool.api.schemas import (
    CanCancelResponse,
    CancellationCreateRequest,
    CancellationResponse,
)
from ridepool.services.cancellation import CancellationService

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post(
    "/cancel",
    response_model=CancellationResponse,
    summary="Cancel a booking",
    description=(
        "Free more than 10 minutes before pickup, otherwise 20% of the fare. "
        "The booking leaves its ride group immediately; the group is "
        "rebalanced in the background."
    ),
)
@limiter.limit(RATE_LIMIT)
async def cancel_booking(
    request: Request,
    body: CancellationCreateRequest,
    cancellation: CancellationService = Depends(get_cancellation),
):
    return await cancellation.cancel(body.to_domain())


@router.get(
    "/{booking_id}/can-cancel",
    response_model=CanCancelResponse,
    summary="Check cancellation eligibility",
)
@limiter.limit(RATE_LIMIT)
async def can_cancel(
    request: Request,
    booking_id: int,
    cancellation: CancellationService = Depends(get_cancellation),
):
    return CanCancelResponse(
        booking_id=booking_id, can_cancel=await cancellation.can_cancel(booking_id)
    )
