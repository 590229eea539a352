"""Shared pytest fixtures & helpers.

Provides small synthetic road networks near (0, 0) so that distances are easy
to reason about: 0.001 degrees is roughly 111 m in both directions.
"""
from __future__ import annotations

import pytest
from pyproj import Geod

from roadsnap.models import Coordinate, RoadSegment
from roadsnap.utilities.spatial_index import SpatialGridIndex

_GEOD = Geod(ellps="WGS84")


# --- Factory helpers -------------------------------------------------
def destination(origin: Coordinate, bearing_deg: float, meters: float) -> Coordinate:
    """Point ``meters`` away from ``origin`` along ``bearing_deg`` (0 = north, 90 = east)."""
    lon, lat, _ = _GEOD.fwd(origin.lon, origin.lat, bearing_deg, meters)
    return Coordinate(float(lat), float(lon))


def distance(a: Coordinate, b: Coordinate) -> float:
    _, _, d = _GEOD.inv(a.lon, a.lat, b.lon, b.lat)
    return float(d)


def seg(a, b, **kwargs) -> RoadSegment:
    return RoadSegment(Coordinate(*a), Coordinate(*b), **kwargs)


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def straight_road():
    """A single ~33 m two-way segment running east from the origin."""
    return [seg((0.0, 0.0), (0.0, 0.0003))]


@pytest.fixture
def long_road():
    """A single ~556 m two-way segment running east from the origin."""
    return [seg((0.0, 0.0), (0.0, 0.005))]


@pytest.fixture
def crossroads():
    """Four two-way arms meeting at (0, 0.001).

    0: west arm, runs east into the junction
    1: east arm, runs east out of the junction
    2: north arm, runs north out of the junction
    3: south arm, runs north into the junction
    """
    return [
        seg((0.0, 0.0), (0.0, 0.001)),
        seg((0.0, 0.001), (0.0, 0.002)),
        seg((0.0, 0.001), (0.001, 0.001)),
        seg((-0.001, 0.001), (0.0, 0.001)),
    ]


@pytest.fixture
def oneway_east():
    """A ~111 m one-way segment where only eastbound travel is legal."""
    return [seg((0.0, 0.0), (0.0, 0.001), is_oneway=True, forward_direction=True)]


@pytest.fixture
def make_index():
    def _make(segments, cell_size_deg=0.001):
        return SpatialGridIndex.build(segments, cell_size_deg)
    return _make
