"""
Trajectory compression module for roadsnap.

Point-count reduction for GPS trajectories:

- ``remove_duplicates``: drop consecutive fixes that did not move
- ``simplify``: Douglas-Peucker line simplification with a meter tolerance
- ``thin_track``: stride decimation of very long tracks before matching

Each function works on plain point sequences and has a ``*_df`` variant that
keeps every other column of the selected rows.
"""

import logging
import math
from typing import List, Union

import numpy as np
import pandas as pd
import polars as pl

from roadsnap.models import Coordinate, TrackLike, as_coordinate
from roadsnap.preprocessing.filtration import (
    _from_pandas_preserve,
    _require_columns,
    _to_pandas_preserve,
    _track_from_frame,
)
from roadsnap.utilities.geometry import distance_point_to_segment, geodesic_distance

logger = logging.getLogger(__name__)


# ======================== Index Selection ========================


def _duplicate_free_indices(coords: List[Coordinate], min_distance_threshold: float) -> List[int]:
    if not coords:
        return []
    kept = [0]
    last = coords[0]
    for i in range(1, len(coords)):
        if geodesic_distance(last, coords[i]) > min_distance_threshold:
            kept.append(i)
            last = coords[i]
    return kept


def _simplify_indices(coords: List[Coordinate], tolerance: float) -> List[int]:
    """Douglas-Peucker over an explicit stack of spans instead of recursion."""
    n = len(coords)
    if n < 3:
        return list(range(n))

    keep = np.zeros(n, dtype=bool)
    keep[0] = keep[-1] = True
    stack = [(0, n - 1)]
    while stack:
        first, last = stack.pop()
        if last - first < 2:
            continue
        start, end = coords[first], coords[last]
        max_dist = -1.0
        split = first
        for i in range(first + 1, last):
            d = distance_point_to_segment(coords[i], start, end)
            if d > max_dist:
                max_dist = d
                split = i
        if max_dist > tolerance:
            keep[split] = True
            stack.append((first, split))
            stack.append((split, last))
    return np.flatnonzero(keep).tolist()


def _thin_indices(n: int, max_points: int) -> List[int]:
    if n <= max_points:
        return list(range(n))
    stride = int(math.ceil(n / max_points))
    idx = list(range(0, n, stride))
    if idx[-1] != n - 1:
        idx.append(n - 1)
    return idx


# ======================== Point Sequences ========================


def remove_duplicates(track: TrackLike, min_distance_threshold: float = 0.1) -> List[Coordinate]:
    """
    Drop points that did not move away from the last kept point.

    A point is kept only if its geodesic distance to the previously kept point
    exceeds ``min_distance_threshold``. The first point is always kept. The
    operation is idempotent.

    Parameters
    ----------
    track : sequence of TrackPoint, Coordinate or (lat, lon)
        Input trajectory.
    min_distance_threshold : float, default=0.1
        Minimum movement in meters.

    Returns
    -------
    list of Coordinate
    """
    coords = [as_coordinate(p) for p in track]
    kept = _duplicate_free_indices(coords, min_distance_threshold)
    if len(kept) < len(coords):
        logger.debug("Removed %d duplicate points", len(coords) - len(kept))
    return [coords[i] for i in kept]


def simplify(track: TrackLike, tolerance: float = 5.0) -> List[Coordinate]:
    """
    Douglas-Peucker simplification.

    For each span the point farthest from the chord between the span's
    endpoints is found; if it deviates by more than ``tolerance`` meters the
    span is split there and both halves are processed, otherwise only the
    endpoints survive.

    Parameters
    ----------
    track : sequence of TrackPoint, Coordinate or (lat, lon)
        Input trajectory.
    tolerance : float, default=5.0
        Maximum allowed deviation in meters.

    Returns
    -------
    list of Coordinate
        Never longer than the input; the first and last input points are
        always retained.

    Notes
    -----
    Deviation is measured to the chord segment (clamped), not to the infinite
    line through the endpoints, so points beyond either end of the chord
    count with their distance to that endpoint.
    """
    if tolerance < 0:
        raise ValueError("tolerance must not be negative")
    coords = [as_coordinate(p) for p in track]
    return [coords[i] for i in _simplify_indices(coords, tolerance)]


def thin_track(track: TrackLike, max_points: int = 1000) -> List[Coordinate]:
    """
    Keep every k-th point so that at most about ``max_points`` remain.

    The last point is always kept, which can add one point above the cap.
    """
    if max_points < 2:
        raise ValueError("max_points must be >= 2")
    coords = [as_coordinate(p) for p in track]
    return [coords[i] for i in _thin_indices(len(coords), max_points)]


# ======================== DataFrames ========================


def _select_rows(df, lat_col, lon_col, selector):
    pdf, was_polars = _to_pandas_preserve(df)
    _require_columns(pdf, lat_col, lon_col)
    coords = _track_from_frame(pdf, lat_col, lon_col)
    out = pdf.iloc[selector(coords)].reset_index(drop=True)
    return _from_pandas_preserve(out, was_polars)


def remove_duplicates_df(df: Union[pd.DataFrame, pl.DataFrame],
                         min_distance_threshold: float = 0.1,
                         lat_col: str = "lat",
                         lon_col: str = "lon") -> Union[pd.DataFrame, pl.DataFrame]:
    """
    DataFrame variant of :func:`remove_duplicates`.

    Rows are dropped as a whole; surviving rows keep all their columns.
    Returns the same DataFrame type as the input.
    """
    return _select_rows(df, lat_col, lon_col,
                        lambda coords: _duplicate_free_indices(coords, min_distance_threshold))


def simplify_df(df: Union[pd.DataFrame, pl.DataFrame],
                tolerance: float = 5.0,
                lat_col: str = "lat",
                lon_col: str = "lon") -> Union[pd.DataFrame, pl.DataFrame]:
    """DataFrame variant of :func:`simplify`."""
    if tolerance < 0:
        raise ValueError("tolerance must not be negative")
    return _select_rows(df, lat_col, lon_col, lambda coords: _simplify_indices(coords, tolerance))


def thin_track_df(df: Union[pd.DataFrame, pl.DataFrame],
                  max_points: int = 1000,
                  lat_col: str = "lat",
                  lon_col: str = "lon") -> Union[pd.DataFrame, pl.DataFrame]:
    """DataFrame variant of :func:`thin_track`."""
    if max_points < 2:
        raise ValueError("max_points must be >= 2")
    return _select_rows(df, lat_col, lon_col, lambda coords: _thin_indices(len(coords), max_points))


__all__ = [
    "remove_duplicates",
    "simplify",
    "thin_track",
    "remove_duplicates_df",
    "simplify_df",
    "thin_track_df",
]
