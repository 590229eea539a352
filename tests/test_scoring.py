"""Tests for candidate scoring."""

from __future__ import annotations

import math

import pytest

from roadsnap.config import MatchingConfig
from roadsnap.matching.scoring import (
    best_candidate,
    is_wrong_way,
    rank_candidates,
    score_candidate,
    snap_to_endpoint,
)
from roadsnap.models import Coordinate

from conftest import seg

EAST = (0.0, 1.0)
WEST = (0.0, -1.0)
NORTH = (1.0, 0.0)
NONE = (0.0, 0.0)


def test_full_score_for_aligned_point_on_segment(straight_road):
    point = Coordinate(0.0, 0.0001)
    score = score_candidate(point, straight_road[0], EAST, EAST, distance=0.0)
    # base 1 doubled for proximity, plus heading 3 and look-ahead 2
    assert score == pytest.approx(7.0)


def test_beyond_max_distance_is_excluded(straight_road):
    point = Coordinate(0.001, 0.0001)
    assert score_candidate(point, straight_road[0], EAST, EAST) == -math.inf


def test_proximity_bonus_only_below_half_max_distance(straight_road):
    config = MatchingConfig(max_distance=30.0)
    near = score_candidate(Coordinate(0, 0), straight_road[0], NONE, NONE, distance=14.0, config=config)
    far = score_candidate(Coordinate(0, 0), straight_road[0], NONE, NONE, distance=16.0, config=config)
    assert near == pytest.approx(2.0 / 15.0)
    assert far == pytest.approx(1.0 / 17.0)


def test_two_way_segment_rewards_either_direction(straight_road):
    point = Coordinate(0.0, 0.0001)
    east = score_candidate(point, straight_road[0], EAST, NONE, distance=0.0)
    west = score_candidate(point, straight_road[0], WEST, NONE, distance=0.0)
    north = score_candidate(point, straight_road[0], NORTH, NONE, distance=0.0)
    assert east == pytest.approx(west)
    assert east > north


def test_wrong_way_on_oneway(oneway_east):
    segment = oneway_east[0]
    point = Coordinate(0.0, 0.0005)
    assert is_wrong_way(segment, WEST)
    assert not is_wrong_way(segment, EAST)
    assert not is_wrong_way(segment, NONE)

    assert score_candidate(point, segment, WEST, NONE, distance=0.0) == -math.inf

    lenient = MatchingConfig(strict_oneway=False, wrong_way_penalty=10.0)
    penalised = score_candidate(point, segment, WEST, NONE, distance=0.0, config=lenient)
    assert penalised == pytest.approx(2.0 - 10.0)


def test_zero_heading_is_not_a_conflict(oneway_east):
    point = Coordinate(0.0, 0.0005)
    assert score_candidate(point, oneway_east[0], NONE, NONE, distance=0.0) == pytest.approx(2.0)


def test_continuity_bonuses(straight_road):
    point = Coordinate(0.0, 0.0001)
    base = score_candidate(point, straight_road[0], NONE, NONE, distance=0.0)
    same = score_candidate(point, straight_road[0], NONE, NONE, distance=0.0, is_previous_segment=True)
    connected = score_candidate(point, straight_road[0], NONE, NONE, distance=0.0, is_connected_to_previous=True)
    both = score_candidate(point, straight_road[0], NONE, NONE, distance=0.0,
                           is_previous_segment=True, is_connected_to_previous=True)
    assert same - base == pytest.approx(5.0)
    assert connected - base == pytest.approx(3.0)
    assert both == pytest.approx(same)


def test_rank_orders_by_score_and_drops_excluded(crossroads):
    point = Coordinate(0.00005, 0.0005)
    ranked = rank_candidates(point, crossroads, range(len(crossroads)), EAST, EAST)
    assert [c.segment_index for c in ranked][0] == 0
    assert all(c.score > -math.inf for c in ranked)
    assert all(c.distance_m <= 30.0 for c in ranked)
    scores = [c.score for c in ranked]
    assert scores == sorted(scores, reverse=True)


def test_equal_scores_break_ties_by_index():
    duplicates = [seg((0.0, 0.0), (0.0, 0.001)), seg((0.0, 0.0), (0.0, 0.001))]
    chosen = best_candidate(Coordinate(0.0001, 0.0005), duplicates, [1, 0], EAST, NONE)
    assert chosen.segment_index == 0


def test_best_candidate_none_when_everything_excluded(oneway_east):
    assert best_candidate(Coordinate(0.0, 0.0005), oneway_east, [0], WEST, NONE) is None


def test_snap_to_endpoint(straight_road):
    segment = straight_road[0]
    near_end = Coordinate(0.0, 0.00028)  # ~2 m from the end
    assert snap_to_endpoint(near_end, segment, 0.0) == near_end
    assert snap_to_endpoint(near_end, segment, 5.0) == segment.end
    assert snap_to_endpoint(Coordinate(0.0, 0.00015), segment, 5.0) == Coordinate(0.0, 0.00015)
