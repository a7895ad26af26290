"""
FastAPI application factory.

* Registers routes for passengers, vehicles, rides, bookings, ride
  groups, pricing and admin.
* Builds the service graph, creates missing tables and starts / stops the
  rebalance reactor via lifespan events.
* Maps domain errors to HTTP responses; this is the only place that does.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ridepool.api.middleware import limiter
from ridepool.api.routes import admin, bookings, passengers, pricing, ride_groups, rides, vehicles
from ridepool.bootstrap import Services, build_services
from ridepool.config import settings
from ridepool.domain.errors import (
    CancellationError,
    ConstraintViolationError,
    DuplicateResourceError,
    InvalidStateTransition,
    LockAcquisitionError,
    NoVehicleAvailableError,
    ResourceNotFoundError,
    RidePoolError,
)
from ridepool.infrastructure.database import create_schema

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[RidePoolError], int] = {
    ResourceNotFoundError: 404,
    ConstraintViolationError: 400,
    NoVehicleAvailableError: 503,
    CancellationError: 409,
    LockAcquisitionError: 503,
    InvalidStateTransition: 409,
    DuplicateResourceError: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services if none were injected, then run the reactor."""
    owned = app.state.services is None
    if owned:
        app.state.services = build_services()
        await create_schema(app.state.services.engine)

    services: Services = app.state.services
    await services.reactor.start()
    yield
    if owned:
        await services.close()
    else:
        await services.reactor.stop()


async def ridepool_error_handler(request: Request, exc: RidePoolError) -> JSONResponse:
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    if status >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.error_code, exc)
    return JSONResponse(
        status_code=status,
        content={"detail": exc.message, "error_code": exc.error_code},
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title="Shared Airport Ride Pooling API",
        description=(
            "Pools airport ride requests into shared vehicles, sequences "
            "pickups, prices each ride with surge and sharing discounts, and "
            "rebalances groups after cancellations."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(RidePoolError, ridepool_error_handler)

    # Routers
    for module in (passengers, vehicles, rides, bookings, ride_groups, pricing, admin):
        app.include_router(module.router, prefix="/api/v1")

    return app
