"""
Geometry kernel for roadsnap.

Point-to-segment projection, geodesic distance and heading primitives used by
every other component. All functions are pure.

Projection is planar: the clamped projection parameter ``t`` is computed in a
local equirectangular frame (longitude scaled by cos(latitude)), which is
accurate for the short road segments the matcher works with. Distances are
always geodesic on the WGS84 ellipsoid using pyproj.

Segments near the poles or crossing the antimeridian are not handled; the
planar frame is meaningless there.
"""

import math
from typing import Sequence, Tuple

import numpy as np
from pyproj import Geod

from roadsnap.models import Coordinate, Offset

# single Geod instance reused for speed
_GEOD = Geod(ellps="WGS84")

# Segments shorter than this (meters) are treated as a single point
DEGENERATE_SEGMENT_M = 0.1

# The same threshold as a squared length in the planar degree frame
_DEGENERATE_DEG2 = (DEGENERATE_SEGMENT_M / _GEOD.inv(0.0, 0.0, 0.0, 1.0)[2]) ** 2


def geodesic_distance(a: Coordinate, b: Coordinate) -> float:
    """
    Geodesic distance between two coordinates in meters (WGS84).

    Parameters
    ----------
    a, b : Coordinate
        Positions in decimal degrees.

    Returns
    -------
    float
        Distance in meters. Identical coordinates return exactly 0.0.
    """
    if a.lat == b.lat and a.lon == b.lon:
        return 0.0
    # pyproj.Geod.inv expects lon, lat order
    _, _, dist = _GEOD.inv(a.lon, a.lat, b.lon, b.lat)
    return float(dist)


def geodesic_distances(lats_a: np.ndarray, lons_a: np.ndarray,
                       lats_b: np.ndarray, lons_b: np.ndarray) -> np.ndarray:
    """Vectorized pairwise geodesic distances in meters."""
    _, _, dist = _GEOD.inv(lons_a, lats_a, lons_b, lats_b)
    return np.asarray(dist, dtype=float)


def path_length(points: Sequence[Coordinate]) -> float:
    """Total geodesic length of a polyline in meters."""
    if len(points) < 2:
        return 0.0
    arr = np.asarray(points, dtype=float)
    return float(geodesic_distances(arr[:-1, 0], arr[:-1, 1], arr[1:, 0], arr[1:, 1]).sum())


def point_segment_parameter(point: Coordinate, start: Coordinate, end: Coordinate) -> float:
    """
    Position of the projection of ``point`` along the segment, clamped to [0, 1].

    0 is ``start``, 1 is ``end``. Degenerate segments (shorter than
    ``DEGENERATE_SEGMENT_M`` in the planar frame) return 0.
    """
    scale = math.cos(math.radians((start.lat + end.lat) * 0.5))
    abx = (end.lon - start.lon) * scale
    aby = end.lat - start.lat
    ab2 = abx * abx + aby * aby
    if ab2 < _DEGENERATE_DEG2:
        return 0.0
    apx = (point.lon - start.lon) * scale
    apy = point.lat - start.lat
    t = (apx * abx + apy * aby) / ab2
    return max(0.0, min(1.0, t))


def project_point_onto_segment(point: Coordinate, start: Coordinate, end: Coordinate) -> Coordinate:
    """
    Closest point to ``point`` on the segment start->end.

    Parameters
    ----------
    point : Coordinate
        Query position.
    start, end : Coordinate
        Segment endpoints.

    Returns
    -------
    Coordinate
        The clamped projection. It always lies on the segment, so its distance
        to ``start`` plus its distance to ``end`` equals the segment length up
        to floating point error. For degenerate segments (< 0.1 m) ``start``
        is returned.
    """
    t = point_segment_parameter(point, start, end)
    if t <= 0.0:
        return start
    if t >= 1.0:
        return end
    return Coordinate(
        start.lat + t * (end.lat - start.lat),
        start.lon + t * (end.lon - start.lon),
    )


def distance_point_to_segment(point: Coordinate, start: Coordinate, end: Coordinate) -> float:
    """
    Geodesic distance in meters from ``point`` to its projection on the segment.

    The projection is clamped to the segment extent, so points beyond an end
    measure to that endpoint. Degenerate segments (< 0.1 m) measure to
    ``start``. Both endpoints of a segment are at distance exactly 0.
    """
    return geodesic_distance(point, project_point_onto_segment(point, start, end))


def heading_vector(origin: Coordinate, target: Coordinate) -> Tuple[float, float]:
    """
    Unit (dlat, dlon) direction from ``origin`` to ``target``.

    Returns (0.0, 0.0) when the two coordinates coincide. Callers treat the zero
    vector as "no directional preference", never as north.
    """
    dlat = target.lat - origin.lat
    dlon = target.lon - origin.lon
    length = math.hypot(dlat, dlon)
    if length > 0:
        return dlat / length, dlon / length
    return 0.0, 0.0


def dot(u: Tuple[float, float], v: Tuple[float, float]) -> float:
    """Dot product of two 2D vectors (the cosine when both are unit vectors)."""
    return u[0] * v[0] + u[1] * v[1]


def is_zero_vector(u: Tuple[float, float]) -> bool:
    return u[0] == 0.0 and u[1] == 0.0


def apply_offset(point: Coordinate, offset: Offset) -> Coordinate:
    return Coordinate(point.lat + offset[0], point.lon + offset[1])


def offset_to_meters(offset: Offset, origin: Coordinate) -> float:
    """Geodesic length in meters of a (dlat, dlon) offset applied at ``origin``."""
    return geodesic_distance(origin, apply_offset(origin, offset))


def meters_to_degrees(meters: float, lat: float) -> Tuple[float, float]:
    """
    Convert a distance in meters to (degrees latitude, degrees longitude) at ``lat``.

    Both spans are measured along the WGS84 geodesics due north and due east
    of (``lat``, 0). Used to size grid searches; the longitude span grows
    towards the poles.
    """
    if meters <= 0:
        return 0.0, 0.0
    _, lat_north, _ = _GEOD.fwd(0.0, lat, 0.0, meters)
    lon_east, _, _ = _GEOD.fwd(0.0, lat, 90.0, meters)
    return abs(float(lat_north) - lat), abs(float(lon_east))


__all__ = [
    "DEGENERATE_SEGMENT_M",
    "geodesic_distance",
    "geodesic_distances",
    "path_length",
    "point_segment_parameter",
    "project_point_onto_segment",
    "distance_point_to_segment",
    "heading_vector",
    "dot",
    "is_zero_vector",
    "offset_to_meters",
    "apply_offset",
    "meters_to_degrees",
]
