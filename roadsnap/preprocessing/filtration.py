"""
Trajectory smoothing module for roadsnap.

A centred moving-average filter that damps GPS jitter before or after map
matching, plus the DataFrame helpers shared by every ``*_df`` function of the
preprocessing package (pandas in -> pandas out, polars in -> polars out).
"""

from typing import List, Optional, Tuple, Union

import numpy as np
import pandas as pd
import polars as pl

from roadsnap.models import Coordinate, TrackLike, as_coordinate


# ======================== DataFrame Helpers ========================


def _to_pandas_preserve(df: Union[pd.DataFrame, pl.DataFrame]) -> Tuple[pd.DataFrame, bool]:
    """
    Convert input DataFrame to pandas and track original type.

    Returns: (pandas_df, was_polars_flag)
    """
    if isinstance(df, pl.DataFrame):
        return df.to_pandas(), True
    return df.copy(), False


def _from_pandas_preserve(pdf: pd.DataFrame, was_polars: bool) -> Union[pd.DataFrame, pl.DataFrame]:
    """Convert pandas DataFrame back to polars when the caller passed polars."""
    return pl.from_pandas(pdf) if was_polars else pdf


def _require_columns(pdf: pd.DataFrame, *cols: Optional[str]) -> None:
    missing = [c for c in cols if c is not None and c not in pdf.columns]
    if missing:
        raise ValueError(f"DataFrame is missing required column(s): {', '.join(missing)}")


def _track_from_frame(pdf: pd.DataFrame, lat_col: str, lon_col: str) -> List[Coordinate]:
    lats = pdf[lat_col].to_numpy(dtype=float)
    lons = pdf[lon_col].to_numpy(dtype=float)
    return [Coordinate(float(a), float(b)) for a, b in zip(lats, lons)]


# ======================== Smoothing ========================


def smooth_track(track: TrackLike, window_size: int = 5) -> List[Coordinate]:
    """
    Centred moving-average smoothing of a trajectory.

    Each output point is the mean of the input points within ``window_size // 2``
    positions on either side; the window shrinks at the ends of the track.

    Parameters
    ----------
    track : sequence of TrackPoint, Coordinate or (lat, lon)
        Input trajectory.
    window_size : int, default=5
        Width of the averaging window. Tracks shorter than the window are
        returned unchanged.

    Returns
    -------
    list of Coordinate
        Smoothed trajectory with the same number of points as the input.

    Examples
    --------
    >>> smooth_track([(0.0, 0.0), (0.0, 1.0), (0.0, 2.0)], window_size=3)
    [Coordinate(lat=0.0, lon=0.5), Coordinate(lat=0.0, lon=1.0), Coordinate(lat=0.0, lon=1.5)]
    """
    if window_size < 1:
        raise ValueError("window_size must be >= 1")
    coords = [as_coordinate(p) for p in track]
    if len(coords) < window_size:
        return coords

    arr = np.asarray(coords, dtype=float)
    half = window_size // 2
    n = len(arr)

    # prefix sums give every window mean in O(n)
    csum = np.vstack([np.zeros((1, 2)), np.cumsum(arr, axis=0)])
    idx = np.arange(n)
    lo = np.maximum(0, idx - half)
    hi = np.minimum(n - 1, idx + half)
    means = (csum[hi + 1] - csum[lo]) / (hi - lo + 1)[:, None]
    return [Coordinate(float(lat), float(lon)) for lat, lon in means]


def smooth_track_df(df: Union[pd.DataFrame, pl.DataFrame],
                    window_size: int = 5,
                    lat_col: str = "lat",
                    lon_col: str = "lon") -> Union[pd.DataFrame, pl.DataFrame]:
    """DataFrame variant of :func:`smooth_track`; other columns are left untouched."""
    pdf, was_polars = _to_pandas_preserve(df)
    _require_columns(pdf, lat_col, lon_col)
    if len(pdf) == 0:
        return _from_pandas_preserve(pdf, was_polars)
    smoothed = smooth_track(_track_from_frame(pdf, lat_col, lon_col), window_size=window_size)
    pdf[lat_col] = [c.lat for c in smoothed]
    pdf[lon_col] = [c.lon for c in smoothed]
    return _from_pandas_preserve(pdf, was_polars)


__all__ = ["smooth_track", "smooth_track_df"]
