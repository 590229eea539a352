"""Tests for on-demand segment connectivity."""

from __future__ import annotations

from roadsnap.matching.connectivity import connected_segments, exit_point, travels_forward
from roadsnap.models import Coordinate

from conftest import seg


def test_eastbound_continuation_ranks_first(crossroads, make_index):
    index = make_index(crossroads)
    # straight on (east arm) beats the perpendicular arms, which tie and fall back to index order
    assert connected_segments(index, 0, travel_heading=(0.0, 1.0)) == [1, 2, 3]


def test_default_exit_is_segment_end(crossroads, make_index):
    index = make_index(crossroads)
    assert connected_segments(index, 0) == [1, 2, 3]


def test_westbound_travel_exits_at_start(crossroads, make_index):
    index = make_index(crossroads)
    assert exit_point(crossroads[0], (0.0, -1.0)) == Coordinate(0.0, 0.0)
    assert connected_segments(index, 0, travel_heading=(0.0, -1.0)) == []


def test_entering_a_oneway_against_its_direction_is_excluded(crossroads, make_index):
    roads = list(crossroads)
    # north arm becomes one-way southbound: it can only be left at the junction, not entered
    roads[2] = seg((0.0, 0.001), (0.001, 0.001), is_oneway=True, forward_direction=False)
    index = make_index(roads)
    assert 2 not in connected_segments(index, 0, travel_heading=(0.0, 1.0))


def test_oneway_segment_exit_follows_legal_direction(make_index):
    roads = [
        seg((0.0, 0.0), (0.0, 0.001), is_oneway=True, forward_direction=False),
        seg((0.0, -0.001), (0.0, 0.0)),
        seg((0.0, 0.001), (0.0, 0.002)),
    ]
    index = make_index(roads)
    assert not travels_forward(roads[0], (0.0, 1.0))
    # legal travel is westbound, so the exit is the start at (0, 0)
    assert connected_segments(index, 0, travel_heading=(0.0, 1.0)) == [1]


def test_result_is_capped(crossroads, make_index):
    index = make_index(crossroads)
    assert connected_segments(index, 0, max_results=1) == [1]


def test_connection_distance_limit(make_index):
    roads = [
        seg((0.0, 0.0), (0.0, 0.001)),
        seg((0.0, 0.0012), (0.0, 0.002)),  # starts ~22 m after the first one ends
    ]
    index = make_index(roads)
    assert connected_segments(index, 0, max_connection_distance=50.0) == [1]
    assert connected_segments(index, 0, max_connection_distance=10.0) == []
