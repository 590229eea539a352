"""
Sequential map matcher for roadsnap.

Walks a trajectory point by point, snapping each fix onto the best-scoring
nearby road segment while carrying a smoothed drift correction forward. The
per-run state is an immutable :class:`~roadsnap.models.MatchState` threaded
through :meth:`SequentialMatcher.step`, so one matcher (and its index) can
serve many runs at once.
"""

import logging
import threading
import time
from typing import List, Optional, Tuple

from roadsnap.config import DEFAULT_CONFIG, MatchingConfig
from roadsnap.matching.connectivity import connected_segments
from roadsnap.matching.scoring import rank_candidates
from roadsnap.models import (
    Candidate,
    CandidateSet,
    Coordinate,
    MatchResult,
    MatchState,
    Offset,
    TrackLike,
    as_track_points,
)
from roadsnap.preprocessing.compression import remove_duplicates, simplify
from roadsnap.preprocessing.interpolation import fill_gaps
from roadsnap.preprocessing.track_analysis import look_ahead_distance
from roadsnap.utilities.geometry import apply_offset, heading_vector, offset_to_meters
from roadsnap.utilities.spatial_index import SpatialGridIndex

logger = logging.getLogger(__name__)

_ZERO = (0.0, 0.0)


def postprocess(coordinates: List[Coordinate], config: MatchingConfig) -> List[Coordinate]:
    """Apply the post-processing steps enabled in ``config`` to a matched track."""
    out = coordinates
    if config.remove_duplicates:
        out = remove_duplicates(out, config.duplicate_threshold_m)
    if config.fill_gaps:
        out = fill_gaps(out, config.max_gap_distance, config.max_points_to_add)
    if config.simplify_track:
        out = simplify(out, config.simplify_tolerance_m)
    return out


def should_stop(cancel_event: Optional[threading.Event], deadline: Optional[float]) -> bool:
    """True when the run was cancelled or its ``time.monotonic()`` deadline passed."""
    if cancel_event is not None and cancel_event.is_set():
        return True
    return deadline is not None and time.monotonic() >= deadline


class SequentialMatcher:
    """
    Point-by-point matcher over a shared, read-only segment index.

    Parameters
    ----------
    index : SpatialGridIndex
        Road network snapshot to match against.
    config : MatchingConfig, optional
        Run parameters (defaults to ``DEFAULT_CONFIG``).

    Examples
    --------
    >>> from roadsnap.models import Coordinate, RoadSegment
    >>> from roadsnap.utilities.spatial_index import SpatialGridIndex
    >>> index = SpatialGridIndex.build([RoadSegment(Coordinate(0.0, 0.0), Coordinate(0.0, 0.001))])
    >>> result = SequentialMatcher(index).run([(0.00005, 0.0002), (0.00005, 0.0004)])
    >>> result.matched
    [True, True]
    """

    def __init__(self, index: SpatialGridIndex, config: Optional[MatchingConfig] = None):
        self.index = index
        self.config = config or DEFAULT_CONFIG

    # ------------------------------------------------------------------ search

    def _search(self, point: Coordinate, state: MatchState,
                connected: List[int]) -> Tuple[List[int], str]:
        """Candidate segment indices for ``point`` and the search stage that found them."""
        cfg = self.config
        tracking = state.last_segment_index is not None
        radius = cfg.tracking_search_radius if tracking else cfg.cold_search_radius

        found = self.index.query(point, radius)
        if found:
            return sorted(found), "grid"
        if connected:
            return list(connected), "connected"
        while radius < cfg.max_search_radius:
            radius += 1
            found = self.index.query(point, radius)
            if found:
                return sorted(found), "widened"
        return self.index.stride_sample(cfg.fallback_sample_size), "sampled"

    def _next_offset(self, state: MatchState, error: Offset,
                     raw_point: Coordinate) -> Tuple[Offset, Tuple[Offset, ...]]:
        """
        Drift offset after a match whose projection differs from the raw fix by ``error``.

        The offset is the mean of the last ``offset_window`` errors, each taken
        as projection minus raw fix, clamped to ``max_drift_m``. A constant GPS
        bias therefore settles at exactly that bias.
        """
        cfg = self.config
        history = (state.history + (error,))[-cfg.offset_window:]
        offset = (
            sum(e[0] for e in history) / len(history),
            sum(e[1] for e in history) / len(history),
        )

        magnitude = offset_to_meters(offset, raw_point)
        if magnitude > cfg.max_drift_m:
            scale = cfg.max_drift_m / magnitude
            offset = (offset[0] * scale, offset[1] * scale)
        return offset, history

    # ------------------------------------------------------------------ step

    def step(
        self,
        state: MatchState,
        raw_point: Coordinate,
        previous_raw: Optional[Coordinate] = None,
        look_ahead_point: Optional[Coordinate] = None,
        point_index: int = 0,
    ) -> Tuple[MatchState, Coordinate, CandidateSet]:
        """
        Match one point.

        Parameters
        ----------
        state : MatchState
            State after the previous point (``MatchState()`` for the first).
        raw_point : Coordinate
            The raw GPS fix.
        previous_raw : Coordinate, optional
            Previous raw fix; gives the movement heading. Headings are taken
            from raw points so the drift correction never bends them.
        look_ahead_point : Coordinate, optional
            A raw fix further along the track; gives the look-ahead heading.
        point_index : int, default=0
            Position of the point in the track, recorded in diagnostics.

        Returns
        -------
        new_state : MatchState
        coordinate : Coordinate
            The snapped projection, the force-snapped projection, or the
            drift-corrected point when nothing matched.
        candidate_set : CandidateSet
            Candidates considered and the chosen one (None when unmatched).
        """
        cfg = self.config
        corrected = apply_offset(raw_point, state.offset)
        movement = heading_vector(previous_raw, raw_point) if previous_raw is not None else _ZERO
        look_ahead = heading_vector(raw_point, look_ahead_point) if look_ahead_point is not None else _ZERO

        last = state.last_segment_index
        connected: List[int] = []
        if last is not None:
            connected = connected_segments(
                self.index, last,
                max_connection_distance=cfg.max_connection_distance,
                max_results=cfg.max_connected,
                travel_heading=movement,
            )

        indices, method = self._search(corrected, state, connected)
        if method != "grid":
            logger.debug("Point %d: candidate search fell back to '%s' (%d segments)",
                         point_index, method, len(indices))

        ranked = rank_candidates(
            corrected, self.index.segments, indices, movement, look_ahead,
            previous_segment=last, connected=connected, config=cfg,
        )

        chosen: Optional[Candidate] = ranked[0] if ranked else None
        if chosen is None and cfg.force_snap_to_road:
            hit = self.index.nearest(corrected, cfg.max_force_snap_distance)
            if hit is not None:
                idx, dist, projection = hit
                chosen = Candidate(idx, dist, projection, 0.0)
                method = "force_snap"
                logger.debug("Point %d: force-snapped to segment %d at %.1f m", point_index, idx, dist)

        if chosen is None:
            new_state = MatchState(last_segment_index=None, offset=state.offset, history=state.history)
            output = corrected
        else:
            error = (chosen.projection.lat - raw_point.lat, chosen.projection.lon - raw_point.lon)
            offset, history = self._next_offset(state, error, raw_point)
            new_state = MatchState(last_segment_index=chosen.segment_index, offset=offset, history=history)
            output = chosen.projection

        candidate_set = CandidateSet(point_index, corrected, tuple(ranked), chosen, method)
        return new_state, output, candidate_set

    # ------------------------------------------------------------------ run

    def run(
        self,
        track: TrackLike,
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
        return_candidates: bool = False,
    ) -> MatchResult:
        """
        Match a whole trajectory.

        Parameters
        ----------
        track : sequence of TrackPoint, Coordinate or (lat, lon)
            Ordered GPS fixes.
        cancel_event : threading.Event, optional
            Checked between points; once set the run stops.
        deadline : float, optional
            ``time.monotonic()`` value after which the run stops.
        return_candidates : bool, default=False
            Collect per-point :class:`CandidateSet` diagnostics.

        Returns
        -------
        MatchResult
            On a complete run ``coordinates`` is the post-processed matched
            track. When stopped early it is the matched prefix followed by the
            untouched raw remainder, without post-processing, and
            ``completed`` is False.
        """
        start_time = time.perf_counter()
        points = [p.coordinate for p in as_track_points(track)]
        n = len(points)
        if n == 0:
            return MatchResult(coordinates=[], matched=[], candidate_sets=[] if return_candidates else None)

        k = look_ahead_distance(points)
        state = MatchState()
        output: List[Coordinate] = []
        matched: List[bool] = []
        diagnostics: Optional[List[CandidateSet]] = [] if return_candidates else None
        completed = True

        for i, raw in enumerate(points):
            if should_stop(cancel_event, deadline):
                completed = False
                break
            previous = points[i - 1] if i > 0 else None
            ahead = points[min(i + k, n - 1)] if i < n - 1 else None
            state, coordinate, candidate_set = self.step(state, raw, previous, ahead, point_index=i)
            output.append(coordinate)
            matched.append(candidate_set.chosen is not None)
            if diagnostics is not None:
                diagnostics.append(candidate_set)

        if completed:
            coordinates = postprocess(output, self.config)
        else:
            processed = len(output)
            logger.info("Matching stopped after %d of %d points", processed, n)
            coordinates = output + points[processed:]
            matched = matched + [False] * (n - processed)

        logger.info(
            "Sequential matching: %d/%d points matched in %.3fs (look-ahead %d)",
            sum(matched), n, time.perf_counter() - start_time, k,
        )
        return MatchResult(
            coordinates=coordinates,
            matched=matched,
            completed=completed,
            offset=state.offset,
            candidate_sets=diagnostics,
        )


__all__ = ["SequentialMatcher", "postprocess", "should_stop"]
