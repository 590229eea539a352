"""Tests for turn analysis and adaptive look-ahead."""

from __future__ import annotations

import pytest

from roadsnap.models import Coordinate
from roadsnap.preprocessing import analyze_turns, look_ahead_distance, segment_complexity

from conftest import destination


def _straight(n=20, spacing=10.0):
    origin = Coordinate(0.0, 0.0)
    return [destination(origin, 90.0, spacing * i) for i in range(n)]


def _sawtooth(n=20):
    return [Coordinate(0.0005 if i % 2 else 0.0, 0.0001 * i) for i in range(n)]


def test_straight_track_has_no_turns():
    ratio, indices = analyze_turns(_straight())
    assert ratio == 0.0
    assert indices == []


def test_sawtooth_turns_everywhere():
    ratio, indices = analyze_turns(_sawtooth())
    assert ratio == pytest.approx(1.0)
    assert indices == list(range(2, 18))


def test_short_track_is_not_analysed():
    assert analyze_turns(_straight(n=6)) == (0.0, [])


def test_look_ahead_is_long_on_straight_tracks():
    assert look_ahead_distance(_straight(spacing=10.0)) == 5
    assert look_ahead_distance(_straight(spacing=1.0)) == 15


def test_look_ahead_is_short_on_winding_tracks():
    assert look_ahead_distance(_sawtooth()) == 2


def test_segment_complexity():
    assert segment_complexity(_straight(n=2)) == 0.0
    # straight and dense: only the density term contributes
    assert segment_complexity(_straight(spacing=10.0)) == pytest.approx(0.3)
    assert segment_complexity(_sawtooth()) > segment_complexity(_straight())
