"""
Segment connectivity for roadsnap.

Adjacency between road segments is never stored. It is recomputed on demand
from endpoint proximity through the spatial grid index, which keeps segments
as a flat, immutable arena and avoids a pointer graph.
"""

from typing import List, Optional, Tuple

from roadsnap.models import Coordinate, RoadSegment
from roadsnap.utilities.geometry import dot, geodesic_distance, is_zero_vector
from roadsnap.utilities.spatial_index import SpatialGridIndex

Heading = Tuple[float, float]


def travels_forward(segment: RoadSegment, travel_heading: Optional[Heading] = None) -> bool:
    """
    Whether travel along ``segment`` goes start -> end.

    One-way segments follow their legal direction. Two-way segments follow
    ``travel_heading`` when one is given and non-zero, otherwise forward.
    """
    if segment.is_oneway:
        return segment.forward_direction
    if travel_heading is not None and not is_zero_vector(travel_heading):
        return dot(travel_heading, segment.heading) >= 0
    return True


def effective_heading(segment: RoadSegment, forward: bool) -> Heading:
    """Segment heading in the direction of travel."""
    h = segment.heading
    return h if forward else (-h[0], -h[1])


def exit_point(segment: RoadSegment, travel_heading: Optional[Heading] = None) -> Coordinate:
    """The endpoint a vehicle leaves ``segment`` through."""
    return segment.end if travels_forward(segment, travel_heading) else segment.start


def connected_segments(
    index: SpatialGridIndex,
    segment_index: int,
    max_connection_distance: float = 50.0,
    max_results: int = 20,
    travel_heading: Optional[Heading] = None,
) -> List[int]:
    """
    Segments a vehicle can legally move onto after leaving ``segment_index``.

    Parameters
    ----------
    index : SpatialGridIndex
        Index over the road network snapshot.
    segment_index : int
        The segment being left.
    max_connection_distance : float, default=50.0
        Largest gap in meters between the exit point and the entry endpoint
        of a connected segment.
    max_results : int, default=20
        Cap on the number of returned segments.
    travel_heading : tuple of float or None
        Observed (dlat, dlon) direction of travel; picks the exit of two-way
        segments. Ignored for one-way segments.

    Returns
    -------
    list of int
        Segment indices, best continuation first.

    Notes
    -----
    A segment qualifies when its ``start`` is within reach and forward travel
    is legal on it, or its ``end`` is within reach and reverse travel is
    legal. Candidates are ranked by the cosine between the current segment's
    heading and the candidate's heading in its entry direction (descending),
    then by endpoint distance (ascending), then by index.
    """
    segment = index[segment_index]
    forward = travels_forward(segment, travel_heading)
    exit_at = segment.end if forward else segment.start
    current = effective_heading(segment, forward)

    radius = index.cells_for_distance(max_connection_distance, exit_at.lat)
    ranked = []
    for idx in index.query(exit_at, radius):
        if idx == segment_index:
            continue
        other = index[idx]
        best = None
        if other.allows_forward:
            d = geodesic_distance(exit_at, other.start)
            if d <= max_connection_distance:
                best = (dot(current, other.heading), d)
        if other.allows_reverse:
            d = geodesic_distance(exit_at, other.end)
            if d <= max_connection_distance:
                option = (dot(current, effective_heading(other, False)), d)
                if best is None or (-option[0], option[1]) < (-best[0], best[1]):
                    best = option
        if best is not None:
            ranked.append((-best[0], best[1], idx))

    ranked.sort()
    return [idx for _, _, idx in ranked[:max_results]]


__all__ = ["connected_segments", "exit_point", "travels_forward", "effective_heading"]
