"""Tests for the HMM-style scorer and its decoders."""

from __future__ import annotations

import math

import pytest

from roadsnap.config import MatchingConfig
from roadsnap.matching.probabilistic import HMMScorer, observation_probability, transition_probability
from roadsnap.models import Coordinate

from conftest import seg


def test_observation_probability_decays_with_endpoint_distance(straight_road):
    segment = straight_road[0]
    assert observation_probability(segment.start, segment) == 1.0
    mid = observation_probability(Coordinate(0.0, 0.00015), segment, sigma=50.0)
    assert mid == pytest.approx(math.exp(-16.7 / 50.0), rel=0.01)
    assert observation_probability(Coordinate(0.001, 0.0), segment) < mid


def test_transition_probability(crossroads):
    west, east, north, _ = crossroads
    assert transition_probability(west, east) == 0.9
    assert transition_probability(west, north) == 0.9
    assert transition_probability(east, west) == 0.1
    assert transition_probability(None, east) == 1.0
    assert transition_probability(west, east, connected=0.8, other=0.2) == 0.8


def test_step_normalises_probabilities(crossroads, make_index):
    scorer = HMMScorer(make_index(crossroads), MatchingConfig(max_distance=80.0))
    probs = scorer.step({}, Coordinate(0.00002, 0.0009))
    assert probs
    assert sum(probs.values()) == pytest.approx(1.0)
    assert all(0.0 < p <= 1.0 for p in probs.values())

    after = scorer.step(probs, Coordinate(0.00002, 0.0011))
    assert sum(after.values()) == pytest.approx(1.0)


def test_candidates_are_capped_and_sorted(crossroads, make_index):
    scorer = HMMScorer(make_index(crossroads), MatchingConfig(max_distance=200.0, hmm_max_candidates=2))
    cands = scorer.candidates(Coordinate(0.00002, 0.0005))
    assert len(cands) == 2
    assert cands[0][0] == 0
    assert cands[0][1] <= cands[1][1]


@pytest.mark.parametrize("decoder", ["greedy", "viterbi"])
def test_match_on_straight_road(long_road, make_index, decoder):
    track = [Coordinate(0.00002, 0.0005 + 0.0003 * i) for i in range(8)]
    config = MatchingConfig(fill_gaps=False)
    result = HMMScorer(make_index(long_road), config).match(track, decoder=decoder, return_candidates=True)

    assert result.completed
    assert result.matched == [True] * 8
    for got, raw in zip(result.coordinates, track):
        assert got.lat == pytest.approx(0.0, abs=1e-9)
        assert got.lon == pytest.approx(raw.lon, abs=1e-9)
    assert all(cs.method == f"hmm-{decoder}" for cs in result.candidate_sets)


@pytest.mark.parametrize("decoder", ["greedy", "viterbi"])
def test_points_without_candidates_pass_through(long_road, make_index, decoder):
    far = Coordinate(0.01, 0.002)
    track = [Coordinate(0.0, 0.001), far, Coordinate(0.0, 0.0013)]
    config = MatchingConfig(fill_gaps=False, remove_duplicates=False)
    result = HMMScorer(make_index(long_road), config).match(track, decoder=decoder)

    assert result.matched == [True, False, True]
    assert result.coordinates[1] == far


def test_viterbi_prefers_connected_chain(make_index):
    # a road that continues end-to-start, plus a parallel stub that does not connect
    roads = [
        seg((0.0, 0.0), (0.0, 0.001)),
        seg((0.0, 0.001), (0.0, 0.002)),
        seg((0.00012, 0.0011), (0.00012, 0.002)),
    ]
    track = [Coordinate(0.0, 0.0009), Coordinate(0.00006, 0.0013), Coordinate(0.00006, 0.0019)]
    config = MatchingConfig(max_distance=30.0, fill_gaps=False)
    result = HMMScorer(make_index(roads), config).match(track, decoder="viterbi", return_candidates=True)

    chosen = [cs.chosen.segment_index for cs in result.candidate_sets]
    assert chosen[0] == 0
    assert chosen[1] == 1


def test_unknown_decoder(straight_road, make_index):
    with pytest.raises(ValueError, match="decoder"):
        HMMScorer(make_index(straight_road)).match([], decoder="beam")


def test_candidates_follow_the_direction_of_travel(oneway_east, make_index):
    scorer = HMMScorer(make_index(oneway_east))
    point = Coordinate(0.00002, 0.0005)
    assert [idx for idx, _ in scorer.candidates(point)] == [0]
    assert [idx for idx, _ in scorer.candidates(point, Coordinate(0.00002, 0.0002))] == [0]
    assert scorer.candidates(point, Coordinate(0.00002, 0.0008)) == []
    # a stationary fix carries no direction
    assert [idx for idx, _ in scorer.candidates(point, point)] == [0]


@pytest.mark.parametrize("decoder", ["greedy", "viterbi"])
def test_oneway_segment_never_matched_against_traffic(oneway_east, make_index, decoder):
    track = [Coordinate(0.00002, 0.0008), Coordinate(0.00002, 0.0005), Coordinate(0.00002, 0.0002)]
    config = MatchingConfig(fill_gaps=False)
    result = HMMScorer(make_index(oneway_east), config).match(track, decoder=decoder)

    # the first point has no movement heading yet, so it carries no direction
    assert result.matched == [True, False, False]
    assert result.coordinates[1:] == track[1:]


@pytest.mark.parametrize("decoder", ["greedy", "viterbi"])
def test_short_cross_street_does_not_capture_the_track(make_index, decoder):
    roads = [
        seg((0.0, 0.0), (0.0, 0.002)),            # long east-west road
        seg((-0.0001, 0.001), (0.0001, 0.001)),   # ~22 m north-south street
    ]
    track = [Coordinate(0.00002, lon) for lon in (0.0006, 0.0009, 0.001, 0.0011)]
    config = MatchingConfig(fill_gaps=False)
    result = HMMScorer(make_index(roads), config).match(track, decoder=decoder, return_candidates=True)

    assert [cs.chosen.segment_index for cs in result.candidate_sets] == [0, 0, 0, 0]
    for got, raw in zip(result.coordinates, track):
        assert got.lat == pytest.approx(0.0, abs=1e-9)
        assert got.lon == pytest.approx(raw.lon, abs=1e-9)


def test_heading_filter_can_be_widened(make_index):
    roads = [seg((0.0, 0.0), (0.0, 0.002)), seg((-0.0001, 0.001), (0.0001, 0.001))]
    point, previous = Coordinate(0.00002, 0.0009), Coordinate(0.00002, 0.0006)
    narrow = HMMScorer(make_index(roads)).candidates(point, previous)
    wide = HMMScorer(make_index(roads), MatchingConfig(hmm_max_heading_deg=180.0)).candidates(point, previous)
    assert [idx for idx, _ in narrow] == [0]
    assert sorted(idx for idx, _ in wide) == [0, 1]
