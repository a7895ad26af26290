"""
Matching strategies  (Strategy Pattern)
=======================================

Each strategy reports a ``name`` and a ``priority`` (lower runs first)
and answers two questions:

* ``find_matches(request)``            -- existing groups the request could
  join, best first, every entry meeting all constraints.
* ``find_compatible_bookings(booking)`` -- pending bookings that could share
  a ride with *booking*.

Variants
--------
* ``GreedyNearestNeighborStrategy`` (1) -- scores FORMING groups near the
  pickup (see ``ridepool.domain.matching.evaluate_group``).
* ``ConstraintBasedClusteringStrategy`` (2) -- pairwise compatibility over
  raw pending bookings; never proposes a group.

Strategies are composed and ordered once, in ``ridepool.bootstrap``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ridepool.domain.entities import MatchCandidate, RideRequest
from ridepool.domain.matching import (
    bookings_compatible,
    compatibility_score,
    evaluate_group,
)
from ridepool.infrastructure.models import BookingModel
from ridepool.infrastructure.repositories import BookingRepository, RideGroupRepository

logger = logging.getLogger(__name__)


class RideMatchingStrategy(ABC):
    name: str
    priority: int

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        proximity_radius_km: float = 5.0,
        time_window_minutes: int = 30,
        default_detour_tolerance: float = 0.20,
        h3_resolution: int = 7,
    ):
        self.session_factory = session_factory
        self.proximity_radius_km = proximity_radius_km
        self.time_window_minutes = time_window_minutes
        self.default_detour_tolerance = default_detour_tolerance
        self.h3_resolution = h3_resolution

    @abstractmethod
    async def find_matches(self, request: RideRequest) -> list[MatchCandidate]: ...

    @abstractmethod
    async def find_compatible_bookings(self, booking: BookingModel) -> list[BookingModel]: ...

    async def _nearby_pending(self, booking: BookingModel, limit: int) -> list[BookingModel]:
        async with self.session_factory() as session:
            return await BookingRepository(session).find_nearby_pending(
                booking.pickup_location,
                booking.requested_pickup_time,
                radius_km=self.proximity_radius_km,
                window_minutes=self.time_window_minutes,
                limit=limit,
                exclude_id=booking.id,
                resolution=self.h3_resolution,
            )


class GreedyNearestNeighborStrategy(RideMatchingStrategy):
    name = "GREEDY_NEAREST_NEIGHBOR"
    priority = 1

    max_compatible_bookings = 10

    def __init__(self, session_factory, *, max_candidate_groups: int = 20, **kwargs):
        super().__init__(session_factory, **kwargs)
        self.max_candidate_groups = max_candidate_groups

    async def find_matches(self, request: RideRequest) -> list[MatchCandidate]:
        async with self.session_factory() as session:
            groups = await RideGroupRepository(session).find_forming_near(
                request.pickup,
                request.requested_pickup_time,
                radius_km=self.proximity_radius_km,
                window_minutes=self.time_window_minutes,
                limit=self.max_candidate_groups,
                resolution=self.h3_resolution,
            )

        max_detour = request.tolerance(self.default_detour_tolerance)
        candidates = []
        for group in groups:
            candidate = evaluate_group(
                group,
                pickup=request.pickup,
                requested_time=request.requested_pickup_time,
                passenger_count=request.passenger_count,
                luggage_weight_kg=request.luggage_weight_kg,
                max_detour=max_detour,
            )
            if candidate.meets_all_constraints:
                candidates.append(candidate)
            else:
                logger.debug(
                    "Group %s rejected: %s", group.id, "; ".join(candidate.violated_constraints)
                )

        candidates.sort(key=lambda c: c.match_score, reverse=True)
        logger.info(
            "Greedy matching: %d of %d nearby groups viable", len(candidates), len(groups)
        )
        return candidates

    async def find_compatible_bookings(self, booking: BookingModel) -> list[BookingModel]:
        return await self._nearby_pending(booking, self.max_compatible_bookings)


class ConstraintBasedClusteringStrategy(RideMatchingStrategy):
    name = "CONSTRAINT_BASED_CLUSTERING"
    priority = 2

    max_cluster_candidates = 50

    async def find_matches(self, request: RideRequest) -> list[MatchCandidate]:
        # proactive clustering only; group assignment is left to greedy
        return []

    async def find_compatible_bookings(self, booking: BookingModel) -> list[BookingModel]:
        nearby = await self._nearby_pending(booking, self.max_cluster_candidates)
        compatible = [
            other
            for other in nearby
            if bookings_compatible(
                booking,
                other,
                radius_km=self.proximity_radius_km,
                window_minutes=self.time_window_minutes,
            )
        ]
        compatible.sort(key=lambda other: compatibility_score(booking, other), reverse=True)
        logger.debug(
            "Clustering: %d of %d nearby bookings compatible with %s",
            len(compatible), len(nearby), booking.id,
        )
        return compatible
