"""
Route sequencing for a ride group
=================================

Nearest-Neighbour heuristic
---------------------------
Stops are every member pickup plus the shared destination.  Starting at
the first pickup, repeatedly step to the closest unvisited stop.  This is
a TSP approximation, not an optimum.

Complexity: O(n²) where n = pickups + 1.

Ties are broken by the lower stop index, so re-running on the same
membership always yields the same order and total distance.

Persisted layout
----------------
The visiting order is stored as comma-separated booking ids
(``"12,7,31"``); ``encode_route`` / ``decode_route`` round-trip exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .distance import distance
from .entities import Location


@dataclass(frozen=True)
class RoutePlan:
    pickup_order: list[int]  # indices into the pickups list, visiting order
    total_distance_km: float
    # routed distance from each pickup (by index) to the destination
    remaining_km: dict[int, float]
    # cumulative distance from the first stop to each pickup (by index)
    offset_km: dict[int, float]


def nearest_neighbor_order(points: Sequence[Location]) -> list[int]:
    """Visiting order over *points*, starting at index 0."""
    n = len(points)
    if n == 0:
        return []

    visited = [False] * n
    order = [0]
    visited[0] = True
    current = 0

    while len(order) < n:
        nearest = -1
        best = float("inf")
        for i in range(n):
            if visited[i]:
                continue
            d = distance(points[current], points[i])
            if d < best:
                best = d
                nearest = i
        order.append(nearest)
        visited[nearest] = True
        current = nearest

    return order


def plan_route(pickups: Sequence[Location], destination: Location) -> RoutePlan:
    """Sequence *pickups* then close the tour at *destination*."""
    if not pickups:
        return RoutePlan([], 0.0, {}, {})

    stops = list(pickups) + [destination]
    dest_idx = len(stops) - 1
    order = nearest_neighbor_order(stops)

    # The destination is the final stop even if the heuristic reached it early
    order.remove(dest_idx)
    order.append(dest_idx)

    offsets: list[float] = [0.0]
    for a, b in zip(order, order[1:]):
        offsets.append(offsets[-1] + distance(stops[a], stops[b]))
    total = offsets[-1]

    pickup_order = order[:-1]
    offset_km = {idx: offsets[pos] for pos, idx in enumerate(pickup_order)}
    remaining_km = {idx: total - offsets[pos] for pos, idx in enumerate(pickup_order)}
    return RoutePlan(pickup_order, total, remaining_km, offset_km)


def encode_route(booking_ids: Sequence[int]) -> str:
    return ",".join(str(b) for b in booking_ids)


def decode_route(route: str | None) -> list[int]:
    if not route:
        return []
    return [int(part) for part in route.split(",")]
