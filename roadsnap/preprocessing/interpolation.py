"""
Trajectory gap-filling module for roadsnap.

Inserts evenly spaced points between consecutive fixes that are too far apart,
so that the matched output has no long straight jumps. Interpolation follows
the geodesic between the two fixes using pyproj's WGS84 ellipsoid, so the
inserted points are evenly spaced in meters.
"""

import logging
import math
from typing import List, Tuple, Union

import numpy as np
import pandas as pd
import polars as pl
from pyproj import Geod

from roadsnap.models import Coordinate, TrackLike, as_coordinate
from roadsnap.preprocessing.filtration import (
    _from_pandas_preserve,
    _require_columns,
    _to_pandas_preserve,
)
from roadsnap.utilities.geometry import geodesic_distances

logger = logging.getLogger(__name__)

# single Geod instance reused for speed
_GEOD = Geod(ellps="WGS84")


def _vectorized_interpolate_segment(lat_a: np.ndarray, lon_a: np.ndarray,
                                    lat_b: np.ndarray, lon_b: np.ndarray,
                                    fractions: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Vectorized geodesic interpolation for arrays of segment endpoints and fractions.
    Returns arrays (lat_interp, lon_interp) of the same length as ``fractions``.
    """
    # pyproj.Geod wants lon, lat ordering
    az12, _, s12 = _GEOD.inv(lon_a, lat_a, lon_b, lat_b)
    lon_i, lat_i, _ = _GEOD.fwd(lon_a, lat_a, az12, np.asarray(s12) * fractions)
    return np.asarray(lat_i, dtype=float), np.asarray(lon_i, dtype=float)


def _gap_plan(lats: np.ndarray, lons: np.ndarray, max_gap_distance: float,
              max_points_to_add: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Work out which gaps get filled and where.

    Returns (segment_index, fraction) arrays, one entry per inserted point:
    the point lies ``fraction`` of the way from fix ``segment_index`` to the
    next fix.
    """
    if len(lats) < 2:
        return np.zeros(0, dtype=int), np.zeros(0, dtype=float)
    dists = geodesic_distances(lats[:-1], lons[:-1], lats[1:], lons[1:])

    counts = np.zeros(len(dists), dtype=int)
    for i, d in enumerate(dists):
        if d > max_gap_distance:
            # tolerate float error at exact multiples of the gap
            n = int(math.floor(d / max_gap_distance + 1e-9))
            counts[i] = min(max_points_to_add, max(1, n))

    seg_idx = np.repeat(np.arange(len(dists)), counts)
    fractions = np.concatenate(
        [np.arange(1, c + 1, dtype=float) / (c + 1) for c in counts if c > 0]
    ) if counts.any() else np.zeros(0, dtype=float)
    return seg_idx, fractions


def fill_gaps(track: TrackLike, max_gap_distance: float = 50.0,
              max_points_to_add: int = 5) -> List[Coordinate]:
    """
    Fill large gaps between consecutive points with interpolated points.

    When two consecutive points are more than ``max_gap_distance`` meters
    apart, ``min(max_points_to_add, max(1, int(distance / max_gap_distance)))``
    points are inserted at evenly spaced fractions ``j / (n + 1)`` of the gap.

    Parameters
    ----------
    track : sequence of TrackPoint, Coordinate or (lat, lon)
        Input trajectory.
    max_gap_distance : float, default=50.0
        Largest gap in meters left untouched.
    max_points_to_add : int, default=5
        Cap on the points inserted into a single gap.

    Returns
    -------
    list of Coordinate
        The input points in order with the interpolated points inserted.

    Examples
    --------
    Two points 200 m apart with the defaults get 4 points inserted, 40 m apart:

    >>> from pyproj import Geod
    >>> lon2, lat2, _ = Geod(ellps="WGS84").fwd(0.0, 0.0, 90.0, 200.0)
    >>> len(fill_gaps([(0.0, 0.0), (lat2, lon2)]))
    6

    Notes
    -----
    Once ``max_points_to_add`` is large enough for a gap, no two consecutive
    output points in that gap are farther apart than ``max_gap_distance``.
    """
    if max_gap_distance <= 0:
        raise ValueError("max_gap_distance must be positive")
    if max_points_to_add < 1:
        raise ValueError("max_points_to_add must be >= 1")

    coords = [as_coordinate(p) for p in track]
    if len(coords) < 2:
        return coords

    arr = np.asarray(coords, dtype=float)
    lats, lons = arr[:, 0], arr[:, 1]
    seg_idx, fractions = _gap_plan(lats, lons, max_gap_distance, max_points_to_add)
    if len(seg_idx) == 0:
        return coords

    lat_i, lon_i = _vectorized_interpolate_segment(
        lats[seg_idx], lons[seg_idx], lats[seg_idx + 1], lons[seg_idx + 1], fractions
    )
    logger.debug("Filled %d gaps with %d points", len(np.unique(seg_idx)), len(seg_idx))

    out: List[Coordinate] = []
    j = 0
    for i, c in enumerate(coords):
        out.append(c)
        while j < len(seg_idx) and seg_idx[j] == i:
            out.append(Coordinate(float(lat_i[j]), float(lon_i[j])))
            j += 1
    return out


def fill_gaps_df(df: Union[pd.DataFrame, pl.DataFrame],
                 max_gap_distance: float = 50.0,
                 max_points_to_add: int = 5,
                 lat_col: str = "lat",
                 lon_col: str = "lon",
                 time_col: str = "time") -> Union[pd.DataFrame, pl.DataFrame]:
    """
    DataFrame variant of :func:`fill_gaps`.

    Inserted rows carry interpolated coordinates and, when ``time_col`` is
    present, a timestamp interpolated at the same fraction of the gap. Other
    columns are left empty (NaN/null) on inserted rows. Returns the same
    DataFrame type as the input.
    """
    if max_gap_distance <= 0:
        raise ValueError("max_gap_distance must be positive")
    if max_points_to_add < 1:
        raise ValueError("max_points_to_add must be >= 1")

    pdf, was_polars = _to_pandas_preserve(df)
    _require_columns(pdf, lat_col, lon_col)
    pdf = pdf.reset_index(drop=True)

    lats = pdf[lat_col].to_numpy(dtype=float)
    lons = pdf[lon_col].to_numpy(dtype=float)
    seg_idx, fractions = _gap_plan(lats, lons, max_gap_distance, max_points_to_add)
    if len(seg_idx) == 0:
        return _from_pandas_preserve(pdf, was_polars)

    lat_i, lon_i = _vectorized_interpolate_segment(
        lats[seg_idx], lons[seg_idx], lats[seg_idx + 1], lons[seg_idx + 1], fractions
    )
    inserted = pd.DataFrame({lat_col: lat_i, lon_col: lon_i})
    if time_col in pdf.columns:
        times = pd.to_datetime(pdf[time_col])
        t0 = times.iloc[seg_idx].reset_index(drop=True)
        t1 = times.iloc[seg_idx + 1].reset_index(drop=True)
        inserted[time_col] = t0 + (t1 - t0) * fractions
        pdf[time_col] = times

    # order key: original row i sits at i, inserted rows at i + fraction
    pdf["_order"] = np.arange(len(pdf), dtype=float)
    inserted["_order"] = seg_idx + fractions
    out = (
        pd.concat([pdf, inserted], ignore_index=True)
        .sort_values("_order", kind="stable")
        .drop(columns="_order")
        .reset_index(drop=True)
    )
    logger.debug("Inserted %d rows into %d gaps", len(inserted), len(np.unique(seg_idx)))
    return _from_pandas_preserve(out, was_polars)


__all__ = ["fill_gaps", "fill_gaps_df"]
