"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ridepool.domain.entities import (
    CancellationRequest,
    Location,
    RideRequest,
    as_naive_utc,
)
from ridepool.domain.enums import BookingStatus, RideGroupStatus, VehicleClass, VehicleStatus
from ridepool.domain.routing import decode_route


# ── Requests ──────────────────────────────────────────────────────────


class PassengerCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: Optional[str] = Field(None, max_length=32)
    detour_tolerance: float = Field(0.20, ge=0, le=0.5)
    preferred_vehicle_class: Optional[VehicleClass] = None


class PassengerUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    email: Optional[str] = Field(None, min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: Optional[str] = Field(None, max_length=32)
    detour_tolerance: Optional[float] = Field(None, ge=0, le=0.5)
    preferred_vehicle_class: Optional[VehicleClass] = None


class VehicleCreateRequest(BaseModel):
    license_plate: str = Field(..., min_length=1, max_length=20)
    driver_name: str = Field(..., min_length=1, max_length=120)
    driver_phone: Optional[str] = Field(None, max_length=32)
    vehicle_class: VehicleClass = VehicleClass.SEDAN
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    def location(self) -> Optional[Location]:
        if self.latitude is None or self.longitude is None:
            return None
        return Location(self.latitude, self.longitude)


class LocationUpdateRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class VehicleStatusUpdateRequest(BaseModel):
    status: VehicleStatus


class _TripFields(BaseModel):
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    pickup_address: Optional[str] = Field(None, max_length=255)
    dropoff_lat: float = Field(..., ge=-90, le=90)
    dropoff_lng: float = Field(..., ge=-180, le=180)
    dropoff_address: Optional[str] = Field(None, max_length=255)
    requested_pickup_time: datetime
    preferred_vehicle_class: Optional[VehicleClass] = None

    @field_validator("requested_pickup_time")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return as_naive_utc(value)

    @property
    def pickup(self) -> Location:
        return Location(self.pickup_lat, self.pickup_lng, self.pickup_address)

    @property
    def dropoff(self) -> Location:
        return Location(self.dropoff_lat, self.dropoff_lng, self.dropoff_address)


class RideCreateRequest(_TripFields):
    passenger_id: int
    passenger_count: int = Field(1, ge=1, le=8)
    luggage_weight_kg: float = Field(0.0, ge=0, le=200)
    luggage_count: int = Field(0, ge=0, le=10)
    max_detour_tolerance: Optional[float] = Field(None, ge=0, le=0.5)
    special_requirements: Optional[str] = Field(None, max_length=500)
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )

    def to_domain(self) -> RideRequest:
        return RideRequest(
            passenger_id=self.passenger_id,
            pickup=self.pickup,
            dropoff=self.dropoff,
            requested_pickup_time=self.requested_pickup_time,
            passenger_count=self.passenger_count,
            luggage_weight_kg=self.luggage_weight_kg,
            luggage_count=self.luggage_count,
            max_detour_tolerance=self.max_detour_tolerance,
            preferred_vehicle_class=self.preferred_vehicle_class,
            special_requirements=self.special_requirements,
            idempotency_key=self.idempotency_key,
        )


class FareEstimateRequest(_TripFields):
    pass


class CancellationCreateRequest(BaseModel):
    booking_id: int
    reason: Optional[str] = Field(None, max_length=500)
    initiated_by: str = Field("PASSENGER", max_length=20)

    def to_domain(self) -> CancellationRequest:
        return CancellationRequest(self.booking_id, self.reason, self.initiated_by)


class RebalanceCreateRequest(BaseModel):
    reason: str = Field("Manual rebalance", max_length=200)


class PricingConfigUpdateRequest(BaseModel):
    category: str = Field(..., min_length=1, max_length=50)
    key: str = Field(..., min_length=1, max_length=100)
    value: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    priority: int = 0


# ── Responses ─────────────────────────────────────────────────────────


class PassengerResponse(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    detour_tolerance: float
    preferred_vehicle_class: Optional[VehicleClass] = None
    rating: float
    total_rides: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class VehicleResponse(BaseModel):
    id: int
    license_plate: str
    driver_name: str
    driver_phone: Optional[str] = None
    vehicle_class: VehicleClass
    status: VehicleStatus
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    remaining_seats: int
    remaining_luggage_kg: float

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    passenger_id: int
    ride_group_id: Optional[int] = None
    status: BookingStatus
    pickup_lat: float
    pickup_lng: float
    pickup_address: Optional[str] = None
    dropoff_lat: float
    dropoff_lng: float
    dropoff_address: Optional[str] = None
    requested_pickup_time: datetime
    estimated_pickup_time: Optional[datetime] = None
    passenger_count: int
    luggage_weight_kg: float
    luggage_count: int
    max_detour_tolerance: float
    direct_distance_km: Optional[float] = None
    actual_distance_km: Optional[float] = None
    pickup_sequence: Optional[int] = None
    base_fare: Optional[float] = None
    final_fare: Optional[float] = None
    sharing_discount: Optional[float] = None
    surge_multiplier: Optional[float] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingPageResponse(BaseModel):
    items: list[BookingResponse]
    page: int
    size: int
    total: int
    total_pages: int


class RideGroupResponse(BaseModel):
    id: int
    vehicle_id: Optional[int] = None
    status: RideGroupStatus
    destination_lat: float
    destination_lng: float
    destination_address: Optional[str] = None
    scheduled_departure_time: Optional[datetime] = None
    actual_departure_time: Optional[datetime] = None
    estimated_arrival_time: Optional[datetime] = None
    total_passengers: int
    total_luggage_weight_kg: float
    optimized_route: list[int] = []
    total_distance_km: float
    direct_distance_km: Optional[float] = None
    bookings: list[BookingResponse] = []

    model_config = {"from_attributes": True}

    @field_validator("optimized_route", mode="before")
    @classmethod
    def _decode_route(cls, value):
        if value is None or isinstance(value, str):
            return decode_route(value)
        return value


class CancellationResponse(BaseModel):
    booking_id: int
    cancelled_at: datetime
    reason: Optional[str] = None
    initiated_by: str
    cancellation_fee: float
    refund_amount: float
    triggered_rebalance: bool
    affected_ride_group_id: Optional[int] = None

    model_config = {"from_attributes": True}


class CanCancelResponse(BaseModel):
    booking_id: int
    can_cancel: bool


class RebalanceAcceptedResponse(BaseModel):
    ride_group_id: int
    reason: str
    queued: bool = True


class FareEstimateResponse(BaseModel):
    base_fare: float
    distance_charge: float
    booking_fee: float
    surge_charge: float
    estimated_sharing_discount: float
    estimated_total_fare: float
    surge_multiplier: float
    estimated_distance_km: float
    estimated_co_passengers: int
    message: str

    model_config = {"from_attributes": True}


class SurgeResponse(BaseModel):
    surge_multiplier: float
    surge_percentage: float
    surge_active: bool


class PricingConfigResponse(BaseModel):
    id: int
    category: str
    config_key: str
    config_value: str
    numeric_value: Optional[float] = None
    description: Optional[str] = None
    is_active: bool
    priority: int

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"
    rebalance_reactor_running: bool = False
    pending_rebalances: int = 0
    available_vehicles: int = 0


class ErrorResponse(BaseModel):
    detail: str
    error_code: str
