"""
Data model for roadsnap.

All value types used by the matching engine live here: coordinates, GPS fixes,
road segments and polylines, the per-run match state and the result objects
handed back to callers. Everything is immutable; the matcher derives new
states instead of mutating old ones so that several runs can share one road
index safely.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union


class Coordinate(NamedTuple):
    """WGS84 position in decimal degrees."""

    lat: float
    lon: float


# (delta_lat, delta_lon) in degrees
Offset = Tuple[float, float]
ZERO_OFFSET: Offset = (0.0, 0.0)


@dataclass(frozen=True, slots=True)
class TrackPoint:
    """A single GPS fix. ``timestamp`` may be a datetime, epoch seconds or None."""

    coordinate: Coordinate
    timestamp: Optional[Union[datetime, float]] = None

    @property
    def lat(self) -> float:
        return self.coordinate.lat

    @property
    def lon(self) -> float:
        return self.coordinate.lon


def _new_road_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class RoadSegment:
    """
    Straight piece of road between two coordinates.

    Attributes
    ----------
    start, end : Coordinate
        Segment endpoints.
    is_oneway : bool
        True when only one direction of travel is legal.
    forward_direction : bool
        For one-way segments, True means travel from ``start`` to ``end`` is the
        legal direction; False means ``end`` to ``start``. Ignored for two-way
        segments.
    road_id : str
        Identifier shared by all segments cut from the same polyline. It is
        informational only: connectivity is decided geometrically, never by
        comparing road ids.
    """

    start: Coordinate
    end: Coordinate
    is_oneway: bool = False
    forward_direction: bool = True
    road_id: str = field(default_factory=_new_road_id)

    @property
    def allows_forward(self) -> bool:
        """True when travelling start -> end is legal."""
        return (not self.is_oneway) or self.forward_direction

    @property
    def allows_reverse(self) -> bool:
        """True when travelling end -> start is legal."""
        return (not self.is_oneway) or (not self.forward_direction)

    @property
    def heading(self) -> Tuple[float, float]:
        """Unit (dlat, dlon) vector from start to end, (0, 0) when degenerate."""
        dlat = self.end.lat - self.start.lat
        dlon = self.end.lon - self.start.lon
        length = math.hypot(dlat, dlon)
        if length > 0:
            return dlat / length, dlon / length
        return 0.0, 0.0

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(min_lat, min_lon, max_lat, max_lon)."""
        return (
            min(self.start.lat, self.end.lat),
            min(self.start.lon, self.end.lon),
            max(self.start.lat, self.end.lat),
            max(self.start.lon, self.end.lon),
        )


@dataclass(frozen=True, slots=True)
class Road:
    """Polyline of an original road from which segments are cut."""

    coordinates: Tuple[Coordinate, ...]
    is_oneway: bool = False
    forward_direction: bool = True
    road_id: str = field(default_factory=_new_road_id)

    @property
    def bounding_box(self) -> Tuple[float, float, float, float]:
        """(min_lat, min_lon, max_lat, max_lon); all infinities when empty."""
        if not self.coordinates:
            return math.inf, math.inf, -math.inf, -math.inf
        lats = [c.lat for c in self.coordinates]
        lons = [c.lon for c in self.coordinates]
        return min(lats), min(lons), max(lats), max(lons)

    def to_segments(self, min_segment_length: float = 0.0) -> List[RoadSegment]:
        """Cut the polyline into consecutive segments sharing this road's flags."""
        # geometry imports this module
        from roadsnap.utilities.geometry import geodesic_distance

        segments = []
        for a, b in zip(self.coordinates[:-1], self.coordinates[1:]):
            if min_segment_length > 0 and geodesic_distance(a, b) < min_segment_length:
                continue
            segments.append(RoadSegment(
                start=a,
                end=b,
                is_oneway=self.is_oneway,
                forward_direction=self.forward_direction,
                road_id=self.road_id,
            ))
        return segments


class MatchPhase(str, Enum):
    """Coarse phase of the sequential matcher, derived from a MatchState."""

    NO_PRIOR_MATCH = "no_prior_match"
    TRACKING = "tracking"
    LOST = "lost"


@dataclass(frozen=True, slots=True)
class MatchState:
    """
    Per-run state of the sequential matcher.

    ``offset`` is the drift correction in degrees that is added to every raw
    point before candidate search. It is the clamped mean of ``history``, the
    most recent per-match errors (projection minus raw fix, bounded by the
    configured window).
    """

    last_segment_index: Optional[int] = None
    offset: Offset = ZERO_OFFSET
    history: Tuple[Offset, ...] = ()

    @property
    def phase(self) -> MatchPhase:
        if self.last_segment_index is not None:
            return MatchPhase.TRACKING
        if self.history or self.offset != ZERO_OFFSET:
            return MatchPhase.LOST
        return MatchPhase.NO_PRIOR_MATCH


@dataclass(frozen=True, slots=True)
class Candidate:
    """A scored road segment considered for one trajectory point."""

    segment_index: int
    distance_m: float
    projection: Coordinate
    score: float


@dataclass(frozen=True, slots=True)
class CandidateSet:
    """Diagnostic record of the segments considered for one trajectory point."""

    point_index: int
    query_point: Coordinate
    candidates: Tuple[Candidate, ...]
    chosen: Optional[Candidate]
    method: str


@dataclass(slots=True)
class MatchResult:
    """
    Outcome of a matching run.

    Attributes
    ----------
    coordinates : list of Coordinate
        Corrected trajectory after post-processing.
    matched : list of bool
        Per input point, whether it was snapped onto a road (before
        post-processing, so it aligns with the input, not with coordinates).
    completed : bool
        False when a cancellation flag or time budget stopped the run; the
        unprocessed tail is then passed through unchanged.
    offset : Offset
        Accumulated drift correction at the end of the run.
    candidate_sets : list of CandidateSet or None
        Per-point diagnostics, only collected when requested.
    """

    coordinates: List[Coordinate]
    matched: List[bool] = field(default_factory=list)
    completed: bool = True
    offset: Offset = ZERO_OFFSET
    candidate_sets: Optional[List[CandidateSet]] = None

    @property
    def matched_ratio(self) -> float:
        if not self.matched:
            return 0.0
        return sum(self.matched) / len(self.matched)


TrackLike = Sequence[Union[TrackPoint, Coordinate, Tuple[float, float]]]


def as_coordinate(value) -> Coordinate:
    """Coerce a TrackPoint, Coordinate or (lat, lon) pair into a Coordinate."""
    if isinstance(value, Coordinate):
        return value
    if isinstance(value, TrackPoint):
        return value.coordinate
    lat, lon = value
    return Coordinate(float(lat), float(lon))


def as_track_points(track: Iterable) -> List[TrackPoint]:
    """Normalize any supported track representation into TrackPoints."""
    points = []
    for item in track:
        if isinstance(item, TrackPoint):
            points.append(item)
        else:
            points.append(TrackPoint(as_coordinate(item)))
    return points


__all__ = [
    "Coordinate",
    "Offset",
    "ZERO_OFFSET",
    "TrackPoint",
    "RoadSegment",
    "Road",
    "MatchPhase",
    "MatchState",
    "Candidate",
    "CandidateSet",
    "MatchResult",
    "TrackLike",
    "as_coordinate",
    "as_track_points",
]
