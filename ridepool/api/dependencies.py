"""FastAPI dependency injection helpers."""

from fastapi import Request

from ridepool.bootstrap import Services
from ridepool.services.cancellation import CancellationService
from ridepool.services.fleet import FleetService
from ridepool.services.grouping import RideGroupingService
from ridepool.services.passengers import PassengerService
from ridepool.services.pricing import PricingEngine
from ridepool.workers.rebalancer import RebalanceReactor


def get_services(request: Request) -> Services:
    """The process-wide service graph built at startup."""
    return request.app.state.services


def get_grouping(request: Request) -> RideGroupingService:
    return get_services(request).grouping


def get_cancellation(request: Request) -> CancellationService:
    return get_services(request).cancellation


def get_pricing(request: Request) -> PricingEngine:
    return get_services(request).pricing


def get_fleet(request: Request) -> FleetService:
    return get_services(request).fleet


def get_passengers(request: Request) -> PassengerService:
    return get_services(request).passengers


def get_reactor(request: Request) -> RebalanceReactor:
    return get_services(request).reactor
