"""
Matching rules
==============

Pure scoring and constraint checks shared by the matching strategies.

Greedy group evaluation (per candidate group)
---------------------------------------------
1. Seat headroom:     class max passengers - group passengers >= requested
2. Luggage headroom:  class max kg - group kg >= requested kg
3. Detour:            additional = insertion_cost(group pickups, new pickup)
                      detour = (group route + additional - baseline) / baseline
                      detour <= requester tolerance

   score = 100 - 5 x additional_km - 100 x detour
               - 0.5 x |departure - requested| (min) + 2 x group passengers
   floored at 0.

Pairwise booking compatibility (clustering)
-------------------------------------------
pickup distance <= radius, |time diff| <= window, passengers <= 6,
luggage <= 150 kg and, when both dropoffs are within 1 km, the pickup leg
as a fraction of the first booking's direct distance stays within the
smaller tolerance.

Complexity: O(k) per group evaluation, k = members; O(1) per pair.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from .distance import detour_percentage, distance, insertion_cost
from .entities import Location, MatchCandidate

MAX_CLUSTER_PASSENGERS = 6
MAX_CLUSTER_LUGGAGE_KG = 150.0
SAME_DESTINATION_KM = 1.0


def minutes_between(a: Optional[datetime], b: Optional[datetime]) -> int:
    """Whole minutes between two instants, truncated."""
    if a is None or b is None:
        return 0
    return int(abs((a - b).total_seconds()) // 60)


def group_match_score(
    additional_km: float,
    detour: float,
    time_diff_minutes: int,
    current_passengers: int,
) -> float:
    score = 100.0
    score -= additional_km * 5
    score -= detour * 100
    score -= time_diff_minutes * 0.5
    score += current_passengers * 2
    return max(0.0, score)


def evaluate_group(
    group,
    *,
    pickup: Location,
    requested_time: datetime,
    passenger_count: int,
    luggage_weight_kg: float,
    max_detour: float,
) -> MatchCandidate:
    """Score *group* for a new pickup; every failed check is recorded."""
    violations: list[str] = []

    vehicle = group.vehicle
    if vehicle is None:
        violations.append("No vehicle assigned to group")
    else:
        vehicle_class = vehicle.vehicle_class
        available_seats = vehicle_class.max_passengers - group.total_passengers
        if available_seats < passenger_count:
            violations.append(
                f"Insufficient seats: need {passenger_count}, available {available_seats}"
            )
        available_kg = vehicle_class.max_luggage_weight_kg - group.total_luggage_weight_kg
        if available_kg < luggage_weight_kg:
            violations.append(
                f"Insufficient luggage capacity: need {luggage_weight_kg:g}kg, "
                f"available {available_kg:g}kg"
            )

    stops: Sequence[Location] = [b.pickup_location for b in group.bookings]
    additional = insertion_cost(stops, pickup)

    new_total = (group.total_distance_km or 0.0) + additional
    baseline = group.direct_distance_km
    if baseline is None:
        baseline = distance(pickup, group.destination)
    detour = detour_percentage(baseline, new_total)

    if detour > max_detour:
        violations.append(
            f"Detour exceeds tolerance: {detour * 100:.1f}% > {max_detour * 100:.1f}%"
        )

    score = group_match_score(
        additional,
        detour,
        minutes_between(group.scheduled_departure_time, requested_time),
        group.total_passengers,
    )
    return MatchCandidate(
        ride_group=group,
        match_score=score,
        estimated_detour=detour,
        additional_distance=additional,
        meets_all_constraints=not violations,
        violated_constraints=violations,
    )


def bookings_compatible(a, b, *, radius_km: float, window_minutes: int) -> bool:
    pickup_gap = distance(a.pickup_location, b.pickup_location)
    if pickup_gap > radius_km:
        return False

    if minutes_between(a.requested_pickup_time, b.requested_pickup_time) > window_minutes:
        return False

    if a.passenger_count + b.passenger_count > MAX_CLUSTER_PASSENGERS:
        return False

    if (a.luggage_weight_kg or 0.0) + (b.luggage_weight_kg or 0.0) > MAX_CLUSTER_LUGGAGE_KG:
        return False

    dropoff_a, dropoff_b = a.dropoff_location, b.dropoff_location
    if dropoff_a is not None and dropoff_b is not None:
        if distance(dropoff_a, dropoff_b) < SAME_DESTINATION_KM:
            tolerance = min(a.max_detour_tolerance, b.max_detour_tolerance)
            pickup_detour = detour_percentage(
                a.direct_distance_km or 0.0, (a.direct_distance_km or 0.0) + pickup_gap
            )
            return pickup_detour <= tolerance

    return True


def compatibility_score(a, b) -> float:
    score = 100.0
    score -= distance(a.pickup_location, b.pickup_location) * 10
    score -= minutes_between(a.requested_pickup_time, b.requested_pickup_time) * 2
    score -= abs(a.max_detour_tolerance - b.max_detour_tolerance) * 50
    score -= abs((a.luggage_weight_kg or 0.0) - (b.luggage_weight_kg or 0.0)) * 0.5
    return max(0.0, score)
