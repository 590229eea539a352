"""Tests for road network preparation."""

from __future__ import annotations

import pytest
from shapely.geometry import LineString

from roadsnap.models import Coordinate, Road
from roadsnap.utilities.road_network import (
    build_segment_index,
    direction_from_tags,
    filter_roads_by_bbox,
    mark_roads_near_track,
    oneway_from_tags,
    road_from_coordinates,
    road_from_linestring,
    roads_to_segments,
    select_roads_for_matching,
    track_bounding_box,
)

from conftest import seg


def _road(*coords, **kwargs):
    return Road(tuple(Coordinate(*c) for c in coords), **kwargs)


@pytest.mark.parametrize("tags,oneway,forward", [
    (None, False, True),
    ({}, False, True),
    ({"oneway": "yes"}, True, True),
    ({"oneway": "True"}, True, True),
    ({"oneway": True}, True, True),
    ({"oneway": "1"}, True, True),
    ({"oneway": "-1"}, True, False),
    ({"oneway": "no"}, False, True),
    ({"oneway": "yes", "direction": "backward"}, True, False),
    ({"oneway": ["yes"]}, True, True),
])
def test_tag_interpretation(tags, oneway, forward):
    assert oneway_from_tags(tags) is oneway
    assert direction_from_tags(tags) is forward


def test_road_from_linestring_swaps_to_lat_lon():
    road = road_from_linestring(LineString([(13.40, 52.52), (13.41, 52.53)]), tags={"oneway": "yes"}, road_id=7)
    assert road.coordinates == (Coordinate(52.52, 13.40), Coordinate(52.53, 13.41))
    assert road.is_oneway
    assert road.road_id == "7"


def test_road_from_linestring_rejects_other_geometries():
    from shapely.geometry import Point

    with pytest.raises(ValueError):
        road_from_linestring(Point(0, 0))


def test_roads_to_segments_share_flags_and_drop_short_pieces():
    road = road_from_coordinates([(0.0, 0.0), (0.0, 0.00005), (0.0, 0.001)], tags={"oneway": "-1"})
    segments = roads_to_segments([road])
    assert len(segments) == 2
    assert all(s.is_oneway and not s.forward_direction for s in segments)
    assert all(s.road_id == road.road_id for s in segments)

    assert len(roads_to_segments([road], min_segment_length=10.0)) == 1
    assert len(roads_to_segments([road, road], max_segments=3)) == 3


def test_build_segment_index_accepts_roads_and_segments():
    index = build_segment_index([_road((0.0, 0.0), (0.0, 0.001), (0.001, 0.001)), seg((0.0, 0.002), (0.0, 0.003))])
    assert len(index) == 3
    with pytest.raises(ValueError):
        build_segment_index(["not a road"])


def test_track_bounding_box():
    bbox = track_bounding_box([(1.0, 2.0), (3.0, -1.0)], expand_by=0.5)
    assert bbox == (0.5, -1.5, 3.5, 2.5)
    with pytest.raises(ValueError):
        track_bounding_box([])


def test_filter_roads_by_bbox():
    inside = _road((0.5, 0.5), (2.0, 2.0))
    outside = _road((5.0, 5.0), (6.0, 6.0))
    crossing = _road((-1.0, 0.5), (2.0, 0.5))  # crosses but has no vertex inside
    assert filter_roads_by_bbox([inside, outside, crossing], (0.0, 0.0, 1.0, 1.0)) == [inside]


def test_mark_roads_near_track_keeps_order():
    track = [Coordinate(0.0, 0.001 * i) for i in range(11)]
    roads = [
        _road((0.0005, 0.0), (0.0005, 0.01)),      # ~55 m north, parallel
        _road((0.05, 0.0), (0.05, 0.01)),          # ~5.5 km north
        _road((-0.001, 0.005), (0.001, 0.005)),    # crosses the track
        _road((0.0, 0.02), (0.0, 0.03)),           # ~1.1 km beyond the end
        _road((0.0015, 0.005)),                    # single vertex ~166 m away
        Road(()),
    ]
    for n_chunks in (1, 2, 4, 10):
        flags = mark_roads_near_track(roads, track, proximity_m=200.0, n_chunks=n_chunks)
        assert flags == [True, False, True, False, True, False]


def test_mark_roads_near_track_edge_cases():
    assert mark_roads_near_track([], [(0.0, 0.0)]) == []
    assert mark_roads_near_track([_road((0.0, 0.0), (0.0, 0.001))], []) == [False]


def test_select_roads_for_matching():
    roads = [_road((0.0, float(i)), (0.0, i + 0.5)) for i in range(10)]
    flags = [i % 3 == 0 for i in range(10)]  # 4 used roads
    picked = select_roads_for_matching(roads, flags, min_roads=2, extra_roads=3)
    assert picked == [roads[0], roads[3], roads[6], roads[9]]

    padded = select_roads_for_matching(roads, flags, min_roads=5, extra_roads=3)
    assert padded == [roads[0], roads[3], roads[6], roads[9], roads[1], roads[2], roads[4]]

    with pytest.raises(ValueError):
        select_roads_for_matching(roads, flags[:-1])
