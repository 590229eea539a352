"""
Map-matching module for roadsnap.

Entry points that snap GPS trajectories onto a road network:

- ``match_track``: match one trajectory with the sequential matcher
  (default) or the HMM-style scorer
- ``match_many``: match independent trajectories concurrently against one
  shared index
- ``snap_to_roads``: DataFrame front end (pandas or polars)
"""

import logging
import threading
import time
import warnings
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
import polars as pl
from scipy.interpolate import interp1d
from tqdm import tqdm

from roadsnap.config import DEFAULT_CONFIG, MatchingConfig
from roadsnap.matching.connectivity import connected_segments
from roadsnap.matching.probabilistic import DECODERS, HMMScorer, observation_probability, transition_probability
from roadsnap.matching.scoring import best_candidate, rank_candidates, score_candidate
from roadsnap.matching.sequential import SequentialMatcher
from roadsnap.models import Coordinate, MatchResult, Road, RoadSegment, TrackLike, TrackPoint
from roadsnap.preprocessing.filtration import _from_pandas_preserve, _require_columns, _to_pandas_preserve
from roadsnap.utilities.geometry import geodesic_distances
from roadsnap.utilities.road_network import build_segment_index
from roadsnap.utilities.spatial_index import SpatialGridIndex

logger = logging.getLogger(__name__)

METHODS = ("sequential", "hmm")

RoadsLike = Union[SpatialGridIndex, Iterable[Union[Road, RoadSegment]]]


def _resolve_config(config: Optional[MatchingConfig], overrides: dict) -> MatchingConfig:
    cfg = config or DEFAULT_CONFIG
    return cfg.with_overrides(**overrides) if overrides else cfg


def _as_index(roads_or_index: RoadsLike, cfg: MatchingConfig) -> SpatialGridIndex:
    if isinstance(roads_or_index, SpatialGridIndex):
        return roads_or_index
    return build_segment_index(roads_or_index, cell_size_deg=cfg.cell_size_deg)


def _run(track, index, cfg, method, decoder, cancel_event, deadline, return_candidates) -> MatchResult:
    if method == "hmm":
        return HMMScorer(index, cfg).match(
            track, decoder=decoder, cancel_event=cancel_event,
            deadline=deadline, return_candidates=return_candidates,
        )
    return SequentialMatcher(index, cfg).run(
        track, cancel_event=cancel_event, deadline=deadline, return_candidates=return_candidates,
    )


def _check_method(method: str, decoder: str) -> None:
    if method not in METHODS:
        raise ValueError(f"Unknown method '{method}'. Use one of: {', '.join(METHODS)}")
    if decoder not in DECODERS:
        raise ValueError(f"Unknown decoder '{decoder}'. Use one of: {', '.join(DECODERS)}")


def match_track(
    track: TrackLike,
    roads_or_index: RoadsLike,
    config: Optional[MatchingConfig] = None,
    method: str = "sequential",
    decoder: str = "greedy",
    cancel_event: Optional[threading.Event] = None,
    time_budget_s: Optional[float] = None,
    return_candidates: bool = False,
    **overrides,
) -> MatchResult:
    """
    Snap one GPS trajectory onto a road network.

    Parameters
    ----------
    track : sequence of TrackPoint, Coordinate or (lat, lon)
        Ordered GPS fixes.
    roads_or_index : SpatialGridIndex or iterable of Road / RoadSegment
        The road network. Passing a prebuilt index avoids rebuilding it for
        every call.
    config : MatchingConfig, optional
        Run parameters (defaults to ``DEFAULT_CONFIG``).
    method : {"sequential", "hmm"}, default="sequential"
        Scoring strategy. The two are alternatives and never combined.
    decoder : {"greedy", "viterbi"}, default="greedy"
        Decoder of the "hmm" method; ignored otherwise.
    cancel_event : threading.Event, optional
        Cooperative cancellation flag checked between points.
    time_budget_s : float, optional
        Wall-clock budget in seconds for the whole run.
    return_candidates : bool, default=False
        Fill ``MatchResult.candidate_sets`` with per-point diagnostics.
    **overrides
        Individual ``MatchingConfig`` fields, e.g. ``max_distance=50``.

    Returns
    -------
    MatchResult
        Never raises for data problems: an empty track gives an empty result,
        an empty road network passes the track through, and a cancelled or
        timed-out run returns the matched prefix plus the raw remainder with
        ``completed=False``.

    Raises
    ------
    ValueError
        For an unknown method, decoder or configuration field, or invalid
        configuration values.

    Examples
    --------
    >>> import roadsnap as rs
    >>> from roadsnap.models import Coordinate, RoadSegment
    >>> road = [RoadSegment(Coordinate(0.0, 0.0), Coordinate(0.0, 0.0003))]
    >>> result = rs.matching.match_track([(0.0, 0.0), (0.0, 0.0001)], road, fill_gaps=False)
    >>> result.coordinates[0]
    Coordinate(lat=0.0, lon=0.0)
    """
    _check_method(method, decoder)
    cfg = _resolve_config(config, overrides)
    index = _as_index(roads_or_index, cfg)
    if index.is_empty():
        warnings.warn("Road network is empty; the track is returned unmatched.", RuntimeWarning, stacklevel=2)

    deadline = time.monotonic() + time_budget_s if time_budget_s is not None else None
    return _run(track, index, cfg, method, decoder, cancel_event, deadline, return_candidates)


def match_many(
    tracks: Sequence[TrackLike],
    roads_or_index: RoadsLike,
    config: Optional[MatchingConfig] = None,
    method: str = "sequential",
    decoder: str = "greedy",
    max_workers: Optional[int] = None,
    verbose: bool = False,
    cancel_event: Optional[threading.Event] = None,
    **overrides,
) -> List[MatchResult]:
    """
    Match independent trajectories concurrently against one road network.

    The spatial index is built once and shared read-only by all workers.
    Each trajectory gets its own matching state, so results are identical to
    matching the tracks one by one.

    Parameters
    ----------
    tracks : sequence of track-like
        Trajectories to match.
    roads_or_index : SpatialGridIndex or iterable of Road / RoadSegment
        The road network.
    max_workers : int, optional
        Thread pool size (``concurrent.futures`` default when None).
    verbose : bool, default=False
        Show a tqdm progress bar.
    cancel_event : threading.Event, optional
        Shared cancellation flag for every run.

    Returns
    -------
    list of MatchResult
        In the same order as ``tracks``.
    """
    _check_method(method, decoder)
    cfg = _resolve_config(config, overrides)
    index = _as_index(roads_or_index, cfg)
    if index.is_empty():
        warnings.warn("Road network is empty; tracks are returned unmatched.", RuntimeWarning, stacklevel=2)

    tracks = list(tracks)
    start_time = time.perf_counter()
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        results_iter = pool.map(
            lambda t: _run(t, index, cfg, method, decoder, cancel_event, None, False),
            tracks,
        )
        if verbose:
            results_iter = tqdm(results_iter, total=len(tracks), desc="matching tracks")
        results = list(results_iter)
    logger.info("Matched %d tracks in %.2fs", len(results), time.perf_counter() - start_time)
    return results


def _interpolate_times(times: pd.Series, raw: np.ndarray, out: np.ndarray) -> pd.Series:
    """Timestamps for ``out`` points by cumulative distance along the raw track."""
    times = pd.to_datetime(times).reset_index(drop=True)
    t_seconds = (times - times.iloc[0]).dt.total_seconds().to_numpy(dtype=float)

    xi = np.concatenate(([0.0], np.cumsum(geodesic_distances(raw[:-1, 0], raw[:-1, 1], raw[1:, 0], raw[1:, 1]))))
    xo = np.concatenate(([0.0], np.cumsum(geodesic_distances(out[:-1, 0], out[:-1, 1], out[1:, 0], out[1:, 1]))))

    # stationary fixes repeat a distance; keep the first time for each
    xi, first = np.unique(xi, return_index=True)
    t_seconds = t_seconds[first]
    if len(xi) < 2 or xo[-1] == 0:
        return pd.Series([times.iloc[0]] * len(out))

    target = xo * (xi[-1] / xo[-1])
    seconds = interp1d(xi, t_seconds, kind="linear", bounds_error=False,
                       fill_value=(t_seconds[0], t_seconds[-1]))(target)
    return pd.Series(times.iloc[0] + pd.to_timedelta(seconds, unit="s"))


def snap_to_roads(
    df: Union[pd.DataFrame, pl.DataFrame],
    roads_or_index: RoadsLike,
    lat_col: str = "lat",
    lon_col: str = "lon",
    time_col: Optional[str] = "time",
    config: Optional[MatchingConfig] = None,
    method: str = "sequential",
    decoder: str = "greedy",
    time_budget_s: Optional[float] = None,
    **overrides,
) -> Union[pd.DataFrame, pl.DataFrame]:
    """
    Snap a trajectory stored in a DataFrame onto a road network.

    Parameters
    ----------
    df : pd.DataFrame or pl.DataFrame
        Trajectory with latitude, longitude and optionally time columns, in
        travel order.
    roads_or_index : SpatialGridIndex or iterable of Road / RoadSegment
        The road network.
    lat_col : str, default="lat"
        Name of the latitude column (WGS84 decimal degrees).
    lon_col : str, default="lon"
        Name of the longitude column (WGS84 decimal degrees).
    time_col : str or None, default="time"
        Name of the time column. Used only when present in ``df``.
    config, method, decoder, time_budget_s, **overrides
        As for :func:`match_track`.

    Returns
    -------
    pd.DataFrame or pl.DataFrame
        Same type as ``df`` with columns ``lat_col``, ``lon_col`` and, when
        the input has one, ``time_col``. Post-processing can change the
        number of rows. When it does not, timestamps are copied row for row;
        otherwise they are interpolated linearly by cumulative distance along
        the track.

    Raises
    ------
    ValueError
        If ``lat_col`` or ``lon_col`` are not present in the DataFrame.

    Examples
    --------
    >>> import pandas as pd
    >>> import roadsnap as rs
    >>>
    >>> df = pd.read_csv('trajectory.csv')
    >>> roads = [rs.utilities.road_from_coordinates(way) for way in ways]
    >>> matched = rs.matching.snap_to_roads(df, roads, max_distance=40)
    """
    pdf, was_polars = _to_pandas_preserve(df)
    _require_columns(pdf, lat_col, lon_col)
    pdf = pdf.reset_index(drop=True)

    raw = np.column_stack((pdf[lat_col].to_numpy(dtype=float), pdf[lon_col].to_numpy(dtype=float)))
    track = [TrackPoint(Coordinate(float(lat), float(lon))) for lat, lon in raw]
    result = match_track(track, roads_or_index, config=config, method=method, decoder=decoder,
                         time_budget_s=time_budget_s, **overrides)

    out = np.asarray(result.coordinates, dtype=float).reshape(-1, 2)
    out_pdf = pd.DataFrame({lat_col: out[:, 0], lon_col: out[:, 1]})
    if time_col is not None and time_col in pdf.columns and len(out_pdf) > 0:
        if len(out_pdf) == len(pdf):
            out_pdf[time_col] = pdf[time_col].to_numpy()
        else:
            out_pdf[time_col] = _interpolate_times(pdf[time_col], raw, out).to_numpy()
        out_pdf = out_pdf[[time_col, lat_col, lon_col]]
    return _from_pandas_preserve(out_pdf, was_polars)


__all__ = [
    "METHODS",
    "match_track",
    "match_many",
    "snap_to_roads",
    "SequentialMatcher",
    "HMMScorer",
    "connected_segments",
    "score_candidate",
    "rank_candidates",
    "best_candidate",
    "observation_probability",
    "transition_probability",
]
