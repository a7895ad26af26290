"""
Vehicle endpoints
=================

POST   /api/v1/vehicles                         -- register a vehicle
GET    /api/v1/vehicles/available               -- vehicles ready for a new group
GET    /api/v1/vehicles/available/type/{class}  -- available vehicles of one class
GET    /api/v1/vehicles/license/{plate}         -- vehicle by license plate
GET    /api/v1/vehicles/nearby                  -- available vehicles within a radius
GET    /api/v1/vehicles/{id}                    -- vehicle details
PATCH  /api/v1/vehicles/{id}/location           -- driver location update
PATCH  /api/v1/vehicles/{id}/status             -- driver status update
DELETE /api/v1/vehicles/{id}                    -- remove an idle vehicle
"""

from fastapi import APIRouter, Depends, Query, Request, Response

from ridepool.api.dependencies import get_fleet
from ridepool.api.middleware import RATE_LIMIT, limiter
from ridepool.api.schemas import (
    LocationUpdateRequest,
    VehicleCreateRequest,
    VehicleResponse,
    VehicleStatusUpdateRequest,
)
from ridepool.domain.entities import Location
from ridepool.domain.enums import VehicleClass
from ridepool.services.fleet import FleetService

router = APIRouter(prefix="/vehicles", tags=["vehicles"])


@router.post("", status_code=201, response_model=VehicleResponse, summary="Register a vehicle")
@limiter.limit(RATE_LIMIT)
async def register_vehicle(
    request: Request,
    body: VehicleCreateRequest,
    fleet: FleetService = Depends(get_fleet),
):
    return await fleet.register_vehicle(
        license_plate=body.license_plate,
        driver_name=body.driver_name,
        driver_phone=body.driver_phone,
        vehicle_class=body.vehicle_class,
        location=body.location(),
    )


@router.get("/available", response_model=list[VehicleResponse], summary="Available vehicles")
@limiter.limit(RATE_LIMIT)
async def available_vehicles(
    request: Request,
    fleet: FleetService = Depends(get_fleet),
):
    return await fleet.available_vehicles()


@router.get(
    "/available/type/{vehicle_class}",
    response_model=list[VehicleResponse],
    summary="Available vehicles of one class",
)
@limiter.limit(RATE_LIMIT)
async def available_vehicles_by_class(
    request: Request,
    vehicle_class: VehicleClass,
    fleet: FleetService = Depends(get_fleet),
):
    return await fleet.available_vehicles(vehicle_class)


@router.get(
    "/license/{license_plate}", response_model=VehicleResponse, summary="Get a vehicle by plate"
)
@limiter.limit(RATE_LIMIT)
async def get_vehicle_by_license_plate(
    request: Request,
    license_plate: str,
    fleet: FleetService = Depends(get_fleet),
):
    return await fleet.get_by_license_plate(license_plate)


@router.get("/nearby", response_model=list[VehicleResponse], summary="Available vehicles nearby")
@limiter.limit(RATE_LIMIT)
async def nearby_vehicles(
    request: Request,
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(5.0, gt=0, le=50),
    fleet: FleetService = Depends(get_fleet),
):
    return await fleet.nearby_vehicles(Location(latitude, longitude), radius_km)


@router.get("/{vehicle_id}", response_model=VehicleResponse, summary="Get a vehicle")
@limiter.limit(RATE_LIMIT)
async def get_vehicle(
    request: Request,
    vehicle_id: int,
    fleet: FleetService = Depends(get_fleet),
):
    return await fleet.get_vehicle(vehicle_id)


@router.patch(
    "/{vehicle_id}/location", response_model=VehicleResponse, summary="Update vehicle location"
)
@limiter.limit(RATE_LIMIT)
async def update_location(
    request: Request,
    vehicle_id: int,
    body: LocationUpdateRequest,
    fleet: FleetService = Depends(get_fleet),
):
    return await fleet.update_location(vehicle_id, Location(body.latitude, body.longitude))


@router.patch(
    "/{vehicle_id}/status", response_model=VehicleResponse, summary="Update vehicle status"
)
@limiter.limit(RATE_LIMIT)
async def update_status(
    request: Request,
    vehicle_id: int,
    body: VehicleStatusUpdateRequest,
    fleet: FleetService = Depends(get_fleet),
):
    return await fleet.update_status(vehicle_id, body.status)


@router.delete("/{vehicle_id}", status_code=204, summary="Delete a vehicle")
@limiter.limit(RATE_LIMIT)
async def delete_vehicle(
    request: Request,
    vehicle_id: int,
    fleet: FleetService = Depends(get_fleet),
):
    await fleet.delete_vehicle(vehicle_id)
    return Response(status_code=204)
