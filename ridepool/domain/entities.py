"""
Domain value objects and transient matching results.

Patterns used
-------------
- **Value Object** ``Location``: immutable, compared by value.
- **State Pattern** helper ``check_transition`` enforces the booking and
  ride-group lifecycles declared in ``enums``.
- ``MatchCandidate`` is produced and consumed within a single matching
  pass; it is never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from .errors import InvalidStateTransition


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every persisted datetime takes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    address: Optional[str] = None

    def distance_to(self, other: Optional["Location"]) -> float:
        from .distance import distance

        return distance(self, other)


# ── Requests ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RideRequest:
    """A passenger's request to be pooled into a shared ride."""

    passenger_id: int
    pickup: Location
    dropoff: Location
    requested_pickup_time: datetime
    passenger_count: int = 1
    luggage_weight_kg: float = 0.0
    luggage_count: int = 0
    max_detour_tolerance: Optional[float] = None
    preferred_vehicle_class: Optional[str] = None
    special_requirements: Optional[str] = None
    idempotency_key: Optional[str] = None

    def tolerance(self, default: float) -> float:
        if self.max_detour_tolerance is None:
            return default
        return self.max_detour_tolerance


@dataclass(frozen=True)
class CancellationRequest:
    booking_id: int
    reason: Optional[str] = None
    initiated_by: str = "PASSENGER"


# ── Matching result ───────────────────────────────────────────────────


@dataclass
class MatchCandidate:
    ride_group: Any
    match_score: float
    estimated_detour: float
    additional_distance: float
    meets_all_constraints: bool
    violated_constraints: list[str] = field(default_factory=list)


# ── State machine ─────────────────────────────────────────────────────


def check_transition(current, new, transitions: Mapping[Any, set]) -> None:
    """Raise ``InvalidStateTransition`` unless *current* -> *new* is legal."""
    allowed = transitions.get(current, set())
    if new not in allowed:
        raise InvalidStateTransition(
            f"Cannot transition from {current.value} to {new.value}"
        )
