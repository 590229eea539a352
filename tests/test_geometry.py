"""Tests for the geometry kernel."""

from __future__ import annotations

import math

import numpy as np
import pytest

from roadsnap.models import Coordinate
from roadsnap.utilities.geometry import (
    apply_offset,
    distance_point_to_segment,
    dot,
    geodesic_distance,
    geodesic_distances,
    heading_vector,
    meters_to_degrees,
    offset_to_meters,
    path_length,
    point_segment_parameter,
    project_point_onto_segment,
)

from conftest import destination

SEGMENTS = [
    (Coordinate(0.0, 0.0), Coordinate(0.0, 0.0003)),
    (Coordinate(52.52, 13.40), Coordinate(52.521, 13.401)),
    (Coordinate(-33.9, 151.2), Coordinate(-33.8995, 151.2)),
    (Coordinate(40.0, -74.0), Coordinate(39.999, -73.998)),
]


@pytest.mark.parametrize("start,end", SEGMENTS)
def test_endpoints_are_on_the_segment(start, end):
    assert distance_point_to_segment(start, start, end) == 0.0
    assert distance_point_to_segment(end, start, end) == 0.0


@pytest.mark.parametrize("start,end", SEGMENTS)
def test_projection_lies_on_segment(start, end):
    length = geodesic_distance(start, end)
    queries = [
        Coordinate(start.lat + 0.0004, start.lon - 0.0002),
        Coordinate((start.lat + end.lat) / 2 + 0.0001, (start.lon + end.lon) / 2),
        Coordinate(end.lat - 0.0003, end.lon + 0.0005),
        Coordinate(end.lat + 0.01, end.lon + 0.01),
    ]
    for q in queries:
        p = project_point_onto_segment(q, start, end)
        assert geodesic_distance(start, p) + geodesic_distance(p, end) == pytest.approx(length, abs=1e-3)


def test_projection_clamps_beyond_the_ends():
    start, end = SEGMENTS[0]
    assert project_point_onto_segment(Coordinate(0.0, -0.001), start, end) == start
    assert project_point_onto_segment(Coordinate(0.0001, 0.01), start, end) == end


def test_projection_of_point_beside_the_middle():
    start, end = SEGMENTS[0]
    p = project_point_onto_segment(Coordinate(0.0001, 0.00015), start, end)
    assert p.lat == pytest.approx(0.0, abs=1e-12)
    assert p.lon == pytest.approx(0.00015, abs=1e-12)
    assert point_segment_parameter(Coordinate(0.0001, 0.00015), start, end) == pytest.approx(0.5)


def test_degenerate_segment_measures_to_start():
    start = Coordinate(10.0, 10.0)
    end = Coordinate(10.0, 10.0 + 1e-7)  # ~1 cm
    q = Coordinate(10.001, 10.0)
    assert point_segment_parameter(q, start, end) == 0.0
    assert distance_point_to_segment(q, start, end) == pytest.approx(geodesic_distance(q, start))
    assert distance_point_to_segment(q, start, start) == pytest.approx(geodesic_distance(q, start))


def test_short_segment_above_threshold_still_projects():
    start = Coordinate(10.0, 10.0)
    end = destination(start, 90.0, 0.5)
    mid = Coordinate(10.0001, (start.lon + end.lon) / 2)
    assert point_segment_parameter(mid, start, end) == pytest.approx(0.5, abs=1e-6)


def test_geodesic_distance_matches_known_length():
    # one degree of longitude on the equator
    assert geodesic_distance(Coordinate(0, 0), Coordinate(0, 1)) == pytest.approx(111_319.49, rel=1e-5)
    assert geodesic_distance(Coordinate(5, 5), Coordinate(5, 5)) == 0.0


def test_vectorized_distances_and_path_length():
    lats = np.array([0.0, 0.0, 0.0])
    lons = np.array([0.0, 0.001, 0.002])
    d = geodesic_distances(lats[:-1], lons[:-1], lats[1:], lons[1:])
    assert d.shape == (2,)
    assert path_length([Coordinate(a, b) for a, b in zip(lats, lons)]) == pytest.approx(d.sum())
    assert path_length([Coordinate(0, 0)]) == 0.0


def test_heading_vector():
    assert heading_vector(Coordinate(0, 0), Coordinate(0, 1)) == (0.0, 1.0)
    assert heading_vector(Coordinate(0, 0), Coordinate(-2, 0)) == (-1.0, 0.0)
    assert heading_vector(Coordinate(1, 1), Coordinate(1, 1)) == (0.0, 0.0)
    h = heading_vector(Coordinate(0, 0), Coordinate(1, 1))
    assert math.hypot(*h) == pytest.approx(1.0)
    assert dot(h, h) == pytest.approx(1.0)


def test_offset_helpers():
    dlat, dlon = meters_to_degrees(1000.0, 0.0)
    assert geodesic_distance(Coordinate(0.0, 0.0), Coordinate(dlat, 0.0)) == pytest.approx(1000.0, rel=1e-6)
    assert geodesic_distance(Coordinate(0.0, 0.0), Coordinate(0.0, dlon)) == pytest.approx(1000.0, rel=1e-6)
    # longitude degrees grow towards the poles
    assert meters_to_degrees(100.0, 60.0)[1] == pytest.approx(2 * meters_to_degrees(100.0, 0.0)[1], rel=1e-2)
    assert meters_to_degrees(0.0, 10.0) == (0.0, 0.0)

    origin = Coordinate(45.0, 7.0)
    assert offset_to_meters((0.0, 0.0), origin) == 0.0
    north = destination(origin, 0.0, 8.0)
    assert offset_to_meters((north.lat - origin.lat, north.lon - origin.lon), origin) == pytest.approx(8.0, abs=1e-6)
    assert apply_offset(Coordinate(1.0, 2.0), (0.5, -0.5)) == Coordinate(1.5, 1.5)
