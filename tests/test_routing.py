"""Unit tests for nearest-neighbour route sequencing and route serialization."""

import random

import pytest

from ridepool.domain.distance import distance
from ridepool.domain.entities import Location
from ridepool.domain.routing import (
    decode_route,
    encode_route,
    nearest_neighbor_order,
    plan_route,
)

DESTINATION = Location(19.0896, 72.8656)


def _scatter(n: int, seed: int) -> list[Location]:
    rng = random.Random(seed)
    return [
        Location(18.90 + rng.random() * 0.1, 72.80 + rng.random() * 0.1) for _ in range(n)
    ]


class TestNearestNeighbor:
    def test_starts_at_first_point(self):
        points = _scatter(5, seed=1)
        assert nearest_neighbor_order(points)[0] == 0

    def test_steps_to_closest(self):
        points = [Location(0, 0), Location(0, 3), Location(0, 1), Location(0, 2)]
        assert nearest_neighbor_order(points) == [0, 2, 3, 1]

    def test_tie_goes_to_lower_index(self):
        points = [Location(0, 0), Location(0, 1), Location(0, -1)]
        assert nearest_neighbor_order(points)[1] == 1

    def test_empty(self):
        assert nearest_neighbor_order([]) == []


class TestPlanRoute:
    @pytest.mark.parametrize("k", [1, 2, 3, 6])
    def test_every_pickup_visited_once(self, k):
        plan = plan_route(_scatter(k, seed=k), DESTINATION)
        assert sorted(plan.pickup_order) == list(range(k))

    @pytest.mark.parametrize("k", [1, 4, 8])
    def test_sequence_indices_are_one_to_k(self, k):
        plan = plan_route(_scatter(k, seed=10 + k), DESTINATION)
        sequences = {idx: seq for seq, idx in enumerate(plan.pickup_order, start=1)}
        assert sorted(sequences.values()) == list(range(1, k + 1))

    def test_destination_is_last_even_when_reached_early(self):
        # second pickup lies beyond the destination, seen from the first
        pickups = [Location(0.0, 0.0), Location(0.0, 3.0)]
        destination = Location(0.0, 1.0)
        plan = plan_route(pickups, destination)
        assert plan.pickup_order == [0, 1]
        expected = distance(pickups[0], pickups[1]) + distance(pickups[1], destination)
        assert plan.total_distance_km == pytest.approx(expected)

    def test_total_is_sum_of_legs(self):
        pickups = _scatter(4, seed=3)
        plan = plan_route(pickups, DESTINATION)
        stops = [pickups[i] for i in plan.pickup_order] + [DESTINATION]
        legs = sum(distance(a, b) for a, b in zip(stops, stops[1:]))
        assert plan.total_distance_km == pytest.approx(legs)

    def test_remaining_distance_ends_at_destination(self):
        pickups = _scatter(3, seed=4)
        plan = plan_route(pickups, DESTINATION)
        last = plan.pickup_order[-1]
        first = plan.pickup_order[0]
        assert plan.remaining_km[last] == pytest.approx(distance(pickups[last], DESTINATION))
        assert plan.remaining_km[first] == pytest.approx(plan.total_distance_km)
        assert plan.offset_km[first] == 0.0

    def test_rerun_is_stable(self):
        pickups = _scatter(6, seed=5)
        first = plan_route(pickups, DESTINATION)
        second = plan_route(pickups, DESTINATION)
        assert first.pickup_order == second.pickup_order
        assert first.total_distance_km == second.total_distance_km

    def test_no_pickups(self):
        plan = plan_route([], DESTINATION)
        assert plan.pickup_order == []
        assert plan.total_distance_km == 0.0


class TestRouteSerialization:
    def test_round_trip_preserves_order(self):
        ids = [12, 7, 31, 1]
        assert encode_route(ids) == "12,7,31,1"
        assert decode_route(encode_route(ids)) == ids

    def test_single(self):
        assert decode_route(encode_route([5])) == [5]

    @pytest.mark.parametrize("empty", [None, ""])
    def test_empty(self, empty):
        assert decode_route(empty) == []
