"""
Domain exception hierarchy.

Every error raised by the core carries a stable ``error_code``; the API
layer is the only place that maps these to HTTP responses.
"""

from __future__ import annotations


class RidePoolError(Exception):
    error_code = "GENERAL_ERROR"

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


class ResourceNotFoundError(RidePoolError):
    error_code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, identifier: object):
        if isinstance(identifier, str):
            message = f"{resource} not found: {identifier}"
        else:
            message = f"{resource} not found with id: {identifier}"
        super().__init__(message)
        self.resource = resource
        self.identifier = identifier


class DuplicateResourceError(RidePoolError):
    error_code = "DUPLICATE_RESOURCE"


class ConstraintViolationError(RidePoolError):
    """Capacity or detour limits would be exceeded."""

    error_code = "CONSTRAINT_VIOLATION"


class NoVehicleAvailableError(RidePoolError):
    """No vehicle within the search radii; safe to retry later."""

    error_code = "NO_VEHICLE_AVAILABLE"

    def __init__(self, message: str = "No vehicles available at the moment"):
        super().__init__(message)


class CancellationError(RidePoolError):
    error_code = "CANCELLATION_ERROR"


class InvalidStateTransition(RidePoolError):
    """Raised when a status change violates the state machine."""

    error_code = "INVALID_STATE_TRANSITION"


class LockAcquisitionError(RidePoolError):
    """A named lock could not be acquired in time; transient."""

    error_code = "LOCK_ACQUISITION_FAILED"

    def __init__(self, key: str, wait_seconds: float):
        super().__init__(
            f"Unable to acquire lock {key} within {wait_seconds:g}s"
        )
        self.key = key
