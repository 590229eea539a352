"""
HMM-style probabilistic scorer for roadsnap.

A cheaper alternative to the sequential matcher. Each candidate segment is a
hidden state; its observation probability decays with the distance from the
GPS fix to the nearer segment endpoint, and moving between two segments is
likely only when the first one ends exactly where the second one starts.

Two decoders are offered:

- ``"greedy"`` (default): an online decoder that keeps, per current
  candidate, only the best probability of reaching it and commits to the
  best candidate at every step. It never revises an earlier choice.
- ``"viterbi"``: keeps backpointers for every step and backtraces from the
  best final state, giving the globally most likely segment sequence.
"""

import logging
import math
import threading
import time
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from roadsnap.config import DEFAULT_CONFIG, MatchingConfig
from roadsnap.matching.connectivity import effective_heading, travels_forward
from roadsnap.matching.scoring import is_wrong_way, snap_to_endpoint
from roadsnap.matching.sequential import postprocess, should_stop
from roadsnap.models import (
    Candidate,
    CandidateSet,
    Coordinate,
    MatchResult,
    RoadSegment,
    TrackLike,
    as_track_points,
)
from roadsnap.utilities.geometry import (
    distance_point_to_segment,
    dot,
    geodesic_distance,
    heading_vector,
    is_zero_vector,
    project_point_onto_segment,
)
from roadsnap.utilities.spatial_index import SpatialGridIndex

logger = logging.getLogger(__name__)

DECODERS = ("greedy", "viterbi")


def observation_probability(point: Coordinate, segment: RoadSegment, sigma: float = 50.0) -> float:
    """``exp(-d / sigma)`` where ``d`` is the distance to the nearer segment endpoint."""
    d = min(geodesic_distance(point, segment.start), geodesic_distance(point, segment.end))
    return math.exp(-d / sigma)


def transition_probability(previous: Optional[RoadSegment], candidate: RoadSegment,
                           connected: float = 0.9, other: float = 0.1) -> float:
    """
    Probability of moving from ``previous`` onto ``candidate``.

    ``connected`` when ``previous.end`` coincides exactly with
    ``candidate.start``, ``other`` otherwise, and 1.0 when there is no
    previous segment.
    """
    if previous is None:
        return 1.0
    return connected if previous.end == candidate.start else other


class HMMScorer:
    """
    Hidden-Markov-style matcher over a shared segment index.

    Parameters
    ----------
    index : SpatialGridIndex
        Road network snapshot to match against.
    config : MatchingConfig, optional
        Uses ``max_distance``, ``cold_search_radius``, ``hmm_sigma``,
        ``hmm_connected_transition``, ``hmm_other_transition``,
        ``hmm_max_candidates``, ``hmm_max_heading_deg``, ``strict_oneway``,
        ``endpoint_snap_m`` and the post-processing flags.
    """

    def __init__(self, index: SpatialGridIndex, config: Optional[MatchingConfig] = None):
        self.index = index
        self.config = config or DEFAULT_CONFIG

    def candidates(self, point: Coordinate,
                   previous: Optional[Coordinate] = None) -> List[Tuple[int, float]]:
        """
        Nearest segments within ``max_distance`` as (index, distance), nearest first.

        When ``previous`` gives a movement heading, one-way segments travelled
        against traffic (with ``strict_oneway``) and segments whose direction
        of travel is more than ``hmm_max_heading_deg`` off the movement are
        dropped.
        """
        cfg = self.config
        movement = heading_vector(previous, point) if previous is not None else (0.0, 0.0)
        directed = not is_zero_vector(movement)
        min_cosine = math.cos(math.radians(cfg.hmm_max_heading_deg))

        found = []
        for idx in self.index.query(point, cfg.cold_search_radius):
            seg = self.index[idx]
            if directed:
                if cfg.strict_oneway and is_wrong_way(seg, movement):
                    continue
                heading = effective_heading(seg, travels_forward(seg, movement))
                if dot(movement, heading) < min_cosine:
                    continue
            d = distance_point_to_segment(point, seg.start, seg.end)
            if d <= cfg.max_distance:
                found.append((d, idx))
        found.sort()
        return [(idx, d) for d, idx in found[:cfg.hmm_max_candidates]]

    def _transition(self, prev_idx: int, cand_idx: int) -> float:
        cfg = self.config
        return transition_probability(
            self.index[prev_idx], self.index[cand_idx],
            connected=cfg.hmm_connected_transition, other=cfg.hmm_other_transition,
        )

    def step(self, prev_probabilities: Dict[int, float], point: Coordinate,
             candidates: Optional[Sequence[Tuple[int, float]]] = None,
             previous: Optional[Coordinate] = None) -> Dict[int, float]:
        """
        Advance the greedy decoder by one point.

        Parameters
        ----------
        prev_probabilities : dict of int to float
            Probability of each candidate of the previous point; empty at the
            start of the track or after a point without candidates.
        point : Coordinate
            Current GPS fix.
        candidates : sequence of (int, float), optional
            Precomputed result of :meth:`candidates`.
        previous : Coordinate, optional
            Earlier raw fix giving the movement heading when ``candidates`` is
            not supplied.

        Returns
        -------
        dict of int to float
            Normalised probability per current candidate. Only the best way of
            reaching each candidate is kept.
        """
        if candidates is None:
            candidates = self.candidates(point, previous)
        sigma = self.config.hmm_sigma
        probs: Dict[int, float] = {}
        for idx, _ in candidates:
            obs = observation_probability(point, self.index[idx], sigma)
            if prev_probabilities:
                prior = max(p * self._transition(prev, idx) for prev, p in prev_probabilities.items())
            else:
                prior = 1.0
            probs[idx] = prior * obs

        total = sum(probs.values())
        if total > 0:
            probs = {idx: p / total for idx, p in probs.items()}
        return probs

    def _viterbi(self, points: List[Coordinate],
                 cand_lists: List[List[Tuple[int, float]]]) -> List[Optional[int]]:
        """Most likely segment per point; runs without candidates break the chain."""
        sigma = self.config.hmm_sigma
        chosen: List[Optional[int]] = [None] * len(points)

        run_start = 0
        while run_start < len(points):
            if not cand_lists[run_start]:
                run_start += 1
                continue
            run_end = run_start
            while run_end + 1 < len(points) and cand_lists[run_end + 1]:
                run_end += 1

            # log-space forward pass with backpointers
            first = cand_lists[run_start]
            scores = np.log([max(observation_probability(points[run_start], self.index[i], sigma), 1e-300)
                             for i, _ in first])
            backpointers: List[np.ndarray] = []
            for t in range(run_start + 1, run_end + 1):
                prev_ids = [i for i, _ in cand_lists[t - 1]]
                cur_ids = [i for i, _ in cand_lists[t]]
                trans = np.log([[self._transition(p, c) for c in cur_ids] for p in prev_ids])
                obs = np.log([max(observation_probability(points[t], self.index[c], sigma), 1e-300)
                              for c in cur_ids])
                total = scores[:, None] + trans
                backpointers.append(np.argmax(total, axis=0))
                scores = total.max(axis=0) + obs

            pos = int(np.argmax(scores))
            for t in range(run_end, run_start - 1, -1):
                chosen[t] = cand_lists[t][pos][0]
                if t > run_start:
                    pos = int(backpointers[t - run_start - 1][pos])
            run_start = run_end + 1
        return chosen

    def match(
        self,
        track: TrackLike,
        decoder: str = "greedy",
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
        return_candidates: bool = False,
    ) -> MatchResult:
        """
        Match a whole trajectory.

        Points without any candidate within ``max_distance`` that agrees with
        the direction of travel pass through unchanged. Cancellation and the
        deadline are checked between points while candidates are collected;
        a stopped run returns the matched
        prefix followed by the raw remainder with ``completed=False``.

        Raises
        ------
        ValueError
            If ``decoder`` is not one of "greedy" or "viterbi".
        """
        if decoder not in DECODERS:
            raise ValueError(f"Unknown decoder '{decoder}'. Use one of: {', '.join(DECODERS)}")

        start_time = time.perf_counter()
        points = [p.coordinate for p in as_track_points(track)]
        n = len(points)
        if n == 0:
            return MatchResult(coordinates=[], matched=[], candidate_sets=[] if return_candidates else None)

        # movement heading is taken from the last fix that had candidates
        cand_lists: List[List[Tuple[int, float]]] = []
        anchor: Optional[Coordinate] = None
        completed = True
        for point in points:
            if should_stop(cancel_event, deadline):
                completed = False
                break
            cands = self.candidates(point, anchor)
            cand_lists.append(cands)
            if cands:
                anchor = point
        processed = len(cand_lists)

        chosen: List[Optional[int]]
        posteriors: List[Dict[int, float]] = []
        if decoder == "viterbi":
            chosen = self._viterbi(points[:processed], cand_lists)
        else:
            chosen = []
            probs: Dict[int, float] = {}
            for point, cands in zip(points, cand_lists):
                probs = self.step(probs, point, cands)
                posteriors.append(probs)
                chosen.append(max(probs, key=lambda i: (probs[i], -i)) if probs else None)

        output: List[Coordinate] = []
        matched: List[bool] = []
        diagnostics: Optional[List[CandidateSet]] = [] if return_candidates else None
        for i in range(processed):
            point, seg_idx = points[i], chosen[i]
            if seg_idx is None:
                output.append(point)
                matched.append(False)
                best = None
            else:
                seg = self.index[seg_idx]
                projection = project_point_onto_segment(point, seg.start, seg.end)
                projection = snap_to_endpoint(projection, seg, self.config.endpoint_snap_m)
                output.append(projection)
                matched.append(True)
                best = seg_idx
            if diagnostics is not None:
                scores = posteriors[i] if posteriors else {}
                cands = tuple(
                    Candidate(idx, d, project_point_onto_segment(point, self.index[idx].start, self.index[idx].end),
                              scores.get(idx, float("nan")))
                    for idx, d in cand_lists[i]
                )
                picked = next((c for c in cands if c.segment_index == best), None)
                diagnostics.append(CandidateSet(i, point, cands, picked, f"hmm-{decoder}"))

        if completed:
            coordinates = postprocess(output, self.config)
        else:
            logger.info("HMM matching stopped after %d of %d points", processed, n)
            coordinates = output + points[processed:]
            matched = matched + [False] * (n - processed)

        logger.info(
            "HMM matching (%s): %d/%d points matched in %.3fs",
            decoder, sum(matched), n, time.perf_counter() - start_time,
        )
        return MatchResult(coordinates=coordinates, matched=matched, completed=completed,
                           candidate_sets=diagnostics)


__all__ = ["observation_probability", "transition_probability", "HMMScorer", "DECODERS"]
