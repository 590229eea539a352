"""
Candidate scoring for the sequential matcher.

A candidate segment's score combines proximity, agreement with the direction
of travel, one-way legality and continuity with the previously matched
segment. Excluded candidates score ``-inf``.
"""

import math
from typing import Collection, Iterable, List, Optional, Sequence, Tuple

from roadsnap.config import DEFAULT_CONFIG, MatchingConfig
from roadsnap.matching.connectivity import effective_heading, travels_forward
from roadsnap.models import Candidate, Coordinate, RoadSegment
from roadsnap.utilities.geometry import (
    distance_point_to_segment,
    dot,
    geodesic_distance,
    is_zero_vector,
    project_point_onto_segment,
)

Heading = Tuple[float, float]

EXCLUDED = float("-inf")


def is_wrong_way(segment: RoadSegment, movement_heading: Heading) -> bool:
    """True when moving along ``movement_heading`` breaks the segment's one-way rule.

    A zero heading carries no direction and never conflicts.
    """
    if not segment.is_oneway or is_zero_vector(movement_heading):
        return False
    cosine = dot(movement_heading, segment.heading)
    if segment.forward_direction:
        return cosine < 0
    return cosine > 0


def score_candidate(
    point: Coordinate,
    segment: RoadSegment,
    movement_heading: Heading,
    look_ahead_heading: Heading,
    *,
    distance: Optional[float] = None,
    is_previous_segment: bool = False,
    is_connected_to_previous: bool = False,
    config: Optional[MatchingConfig] = None,
) -> float:
    """
    Composite score of matching ``point`` onto ``segment``.

    Parameters
    ----------
    point : Coordinate
        Drift-corrected trajectory point.
    segment : RoadSegment
        Candidate segment.
    movement_heading : tuple of float
        Unit (dlat, dlon) direction from the previous raw point; (0, 0) when
        unknown.
    look_ahead_heading : tuple of float
        Unit direction towards a point further along the track; (0, 0) when
        unknown.
    distance : float, optional
        Precomputed point-to-segment distance in meters.
    is_previous_segment : bool, default=False
        The candidate is the previously matched segment.
    is_connected_to_previous : bool, default=False
        The candidate is reachable from the previously matched segment.
    config : MatchingConfig, optional
        Thresholds and weights (defaults to ``DEFAULT_CONFIG``).

    Returns
    -------
    float
        The score, or ``-inf`` when the candidate is excluded: farther than
        ``config.max_distance``, or travelled the wrong way on a one-way
        segment while ``config.strict_oneway`` is set.

    Notes
    -----
    The score is built up as follows:

    1. ``1 / (distance + 1)``
    2. times ``proximity_multiplier`` below half of ``max_distance``
    3. plus ``heading_weight * max(0, cos(movement, segment))`` and
       ``look_ahead_weight * max(0, cos(look_ahead, segment))``
    4. minus ``wrong_way_penalty`` on a wrong-way one-way segment when not strict
    5. plus ``same_segment_bonus`` for the previous segment, otherwise
       ``connected_bonus`` for a connected one

    The segment heading in step 3 is taken in the direction of travel: the
    legal direction of a one-way segment, and whichever direction agrees with
    the movement for a two-way segment.
    """
    cfg = config or DEFAULT_CONFIG
    weights = cfg.weights
    if distance is None:
        distance = distance_point_to_segment(point, segment.start, segment.end)
    if distance > cfg.max_distance:
        return EXCLUDED

    wrong_way = is_wrong_way(segment, movement_heading)
    if wrong_way and cfg.strict_oneway:
        return EXCLUDED

    score = 1.0 / (distance + 1.0)
    if distance < 0.5 * cfg.max_distance:
        score *= weights.proximity_multiplier

    heading = effective_heading(segment, travels_forward(segment, movement_heading))
    score += weights.heading_weight * max(0.0, dot(movement_heading, heading))
    score += weights.look_ahead_weight * max(0.0, dot(look_ahead_heading, heading))

    if wrong_way:
        score -= cfg.wrong_way_penalty

    if is_previous_segment:
        score += weights.same_segment_bonus
    elif is_connected_to_previous:
        score += weights.connected_bonus
    return score


def snap_to_endpoint(projection: Coordinate, segment: RoadSegment, threshold_m: float) -> Coordinate:
    """Move ``projection`` onto the nearer segment endpoint when within ``threshold_m``."""
    if threshold_m <= 0:
        return projection
    d_start = geodesic_distance(projection, segment.start)
    d_end = geodesic_distance(projection, segment.end)
    if min(d_start, d_end) > threshold_m:
        return projection
    return segment.start if d_start <= d_end else segment.end


def rank_candidates(
    point: Coordinate,
    segments: Sequence[RoadSegment],
    indices: Iterable[int],
    movement_heading: Heading,
    look_ahead_heading: Heading,
    previous_segment: Optional[int] = None,
    connected: Collection[int] = (),
    config: Optional[MatchingConfig] = None,
) -> List[Candidate]:
    """
    Score every candidate and return the admissible ones, best first.

    Ordering is by score (descending), then distance (ascending), then
    segment index so the result is deterministic. Excluded candidates are
    left out.
    """
    cfg = config or DEFAULT_CONFIG
    connected = set(connected)
    ranked = []
    for idx in indices:
        seg = segments[idx]
        projection = project_point_onto_segment(point, seg.start, seg.end)
        distance = geodesic_distance(point, projection)
        score = score_candidate(
            point, seg, movement_heading, look_ahead_heading,
            distance=distance,
            is_previous_segment=(idx == previous_segment),
            is_connected_to_previous=(idx in connected),
            config=cfg,
        )
        if math.isinf(score):
            continue
        projection = snap_to_endpoint(projection, seg, cfg.endpoint_snap_m)
        ranked.append(Candidate(idx, distance, projection, score))
    ranked.sort(key=lambda c: (-c.score, c.distance_m, c.segment_index))
    return ranked


def best_candidate(*args, **kwargs) -> Optional[Candidate]:
    """Highest-ranked candidate of :func:`rank_candidates`, or None."""
    ranked = rank_candidates(*args, **kwargs)
    return ranked[0] if ranked else None


__all__ = [
    "EXCLUDED",
    "is_wrong_way",
    "score_candidate",
    "snap_to_endpoint",
    "rank_candidates",
    "best_candidate",
]
