"""
Distance calculation using the Haversine formula.

Assumption
----------
We use great-circle (Haversine) distance instead of a real routing engine
(OSRM / Google Maps) to keep the project self-contained and runnable
locally without external API keys.  In production this module would be
replaced by a routing-service client that returns actual road distances.

H3 cells are used only as a coarse spatial index: ``covering_cells``
returns a hexagon disk that contains every point within a radius, and the
exact cut is made with ``distance``.

Complexity: O(1) per distance call, O(n) for route helpers.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import h3

from .entities import Location

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, a)))


def distance(a: Optional[Location], b: Optional[Location]) -> float:
    """Distance between two locations; 0 when either end is missing."""
    if a is None or b is None:
        return 0.0
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def is_within_radius(a: Location, b: Location, radius_km: float) -> bool:
    return distance(a, b) <= radius_km


def detour_percentage(direct_km: float, with_insertion_km: float) -> float:
    """Fractional detour ``(with - direct) / direct``; 0 for a zero baseline."""
    if direct_km <= 0:
        return 0.0
    return (with_insertion_km - direct_km) / direct_km


def insertion_cost(route: Sequence[Location], point: Location) -> float:
    """
    Minimum extra distance from splicing *point* into *route*.

    Every position is tried: before the first stop, between each pair of
    consecutive stops, and after the last stop.  O(k).
    """
    if not route:
        return 0.0

    best = min(distance(point, route[0]), distance(route[-1], point))
    for prev, nxt in zip(route, route[1:]):
        extra = distance(prev, point) + distance(point, nxt) - distance(prev, nxt)
        best = min(best, extra)
    return best


def total_route_distance(stops: Sequence[Location]) -> float:
    """Sum of consecutive-pair distances along *stops*."""
    return sum(distance(a, b) for a, b in zip(stops, stops[1:]))


# ── Spatial index ─────────────────────────────────────────────────────


def h3_cell(location: Location, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(location.latitude, location.longitude, resolution)


def covering_cells(
    location: Location, radius_km: float, resolution: int = 7
) -> set[str]:
    """
    H3 cells that together contain every point within *radius_km*.

    The ring count is sized from the average edge length with one ring of
    slack, so the disk over-covers the circle.
    """
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    rings = int(math.ceil(radius_km / edge_km)) + 1
    return set(h3.grid_disk(h3_cell(location, resolution), rings))
