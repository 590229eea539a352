"""
Road network utilities for roadsnap.

Helpers that turn road polylines into the segment collection consumed by the
matcher, and that narrow a large road collection down to the roads a
trajectory actually runs along:

- Interpreting OSM-style one-way tags
- Building roads from coordinate lists or shapely LineStrings
- Cutting roads into segments and building the spatial grid index
- Bounding-box filtering around a trajectory
- Marking roads near a trajectory, sharded across a thread pool

File formats are not parsed here; callers hand over coordinates, tags or
shapely geometries they already loaded.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import shapely
from pyproj import Transformer
from shapely.geometry import LineString, Point

from roadsnap.models import Coordinate, Road, RoadSegment, TrackLike, as_coordinate
from roadsnap.utilities.spatial_index import SpatialGridIndex

logger = logging.getLogger(__name__)

BBox = Tuple[float, float, float, float]  # (min_lat, min_lon, max_lat, max_lon)

_ONEWAY_TRUE = {"yes", "true", "1", "-1"}
_REVERSE_VALUES = {"-1", "backward", "reverse"}

# AEQD transformer cache (simple bounded dict)
_AEQD_CACHE: Dict[Tuple[float, float, int], Transformer] = {}


def _get_aeqd_transformer(cen_lat: float, cen_lon: float, precision: int = 6) -> Transformer:
    """Return a WGS84 -> AEQD Transformer centered at (cen_lat, cen_lon).
       Cached by rounding centroid to `precision` decimals."""
    key = (round(cen_lat, precision), round(cen_lon, precision), precision)
    if key in _AEQD_CACHE:
        return _AEQD_CACHE[key]
    proj = f"+proj=aeqd +lat_0={cen_lat:.9f} +lon_0={cen_lon:.9f} +datum=WGS84 +units=m +no_defs"
    fwd = Transformer.from_crs("EPSG:4326", proj, always_xy=True)
    _AEQD_CACHE[key] = fwd
    # keep cache bounded
    if len(_AEQD_CACHE) > 256:
        _AEQD_CACHE.pop(next(iter(_AEQD_CACHE)))
    return fwd


# ----------------------------------------
# Tag interpretation
# ----------------------------------------
def _resolve_tag_value(v):
    if v is None:
        return None
    if isinstance(v, bool):
        return "yes" if v else "no"
    if isinstance(v, (list, tuple)):
        v = v[0] if v else None
        if v is None:
            return None
    return str(v).strip().lower()


def oneway_from_tags(tags: Optional[dict]) -> bool:
    """
    True when the tags describe a one-way road.

    Accepts boolean values as well as OSM strings ("yes", "true", "1", "-1").
    Missing tags mean two-way.
    """
    if not tags:
        return False
    return _resolve_tag_value(tags.get("oneway")) in _ONEWAY_TRUE


def direction_from_tags(tags: Optional[dict]) -> bool:
    """
    True when the legal travel direction follows the geometry's vertex order.

    ``oneway=-1`` and ``direction`` values "backward", "reverse" or "-1" flip it.
    """
    if not tags:
        return True
    if _resolve_tag_value(tags.get("oneway")) == "-1":
        return False
    if _resolve_tag_value(tags.get("direction")) in _REVERSE_VALUES:
        return False
    return True


# ----------------------------------------
# Road construction
# ----------------------------------------
def road_from_coordinates(coordinates: Iterable, tags: Optional[dict] = None,
                          road_id: Optional[str] = None) -> Road:
    """Build a Road from (lat, lon) pairs and optional OSM-style tags."""
    coords = tuple(as_coordinate(c) for c in coordinates)
    kwargs = {}
    if road_id is not None:
        kwargs["road_id"] = str(road_id)
    return Road(
        coordinates=coords,
        is_oneway=oneway_from_tags(tags),
        forward_direction=direction_from_tags(tags),
        **kwargs,
    )


def road_from_linestring(geometry: LineString, tags: Optional[dict] = None,
                         road_id: Optional[str] = None) -> Road:
    """
    Build a Road from a shapely LineString in (lon, lat) order.

    Shapely geometries follow the x=longitude, y=latitude convention used by
    GeoJSON and pyrosm/geopandas road layers.
    """
    if not isinstance(geometry, LineString):
        raise ValueError(f"Expected a LineString, got {geometry.geom_type}")
    return road_from_coordinates(((y, x) for x, y, *_ in geometry.coords), tags=tags, road_id=road_id)


def roads_to_segments(roads: Iterable[Road], min_segment_length: float = 0.0,
                      max_segments: Optional[int] = None) -> List[RoadSegment]:
    """
    Cut roads into segments, preserving road order.

    Parameters
    ----------
    roads : iterable of Road
        Source polylines.
    min_segment_length : float, default=0.0
        Segments shorter than this many meters are dropped.
    max_segments : int or None, default=None
        Truncate the result to this many segments (keeps the first ones).

    Returns
    -------
    list of RoadSegment
    """
    segments: List[RoadSegment] = []
    for road in roads:
        segments.extend(road.to_segments(min_segment_length))
    if max_segments is not None and len(segments) > max_segments:
        logger.info("Truncating %d segments to %d", len(segments), max_segments)
        segments = segments[:max_segments]
    return segments


def build_segment_index(roads_or_segments: Iterable[Union[Road, RoadSegment]],
                        cell_size_deg: float = 0.001,
                        min_segment_length: float = 0.0) -> SpatialGridIndex:
    """Build a spatial grid index from roads, segments, or a mix of both."""
    segments: List[RoadSegment] = []
    for item in roads_or_segments:
        if isinstance(item, Road):
            segments.extend(item.to_segments(min_segment_length))
        elif isinstance(item, RoadSegment):
            segments.append(item)
        else:
            raise ValueError(f"Expected Road or RoadSegment, got {type(item).__name__}")
    return SpatialGridIndex.build(segments, cell_size_deg)


# ----------------------------------------
# Filtering around a trajectory
# ----------------------------------------
def track_bounding_box(track: TrackLike, expand_by: float = 0.0) -> BBox:
    """
    Bounding box of a trajectory, optionally expanded by ``expand_by`` degrees.

    Returns (min_lat, min_lon, max_lat, max_lon).
    """
    if len(track) == 0:
        raise ValueError("Cannot compute the bounding box of an empty track")
    arr = np.asarray([as_coordinate(p) for p in track], dtype=float)
    min_lat, min_lon = arr.min(axis=0)
    max_lat, max_lon = arr.max(axis=0)
    return (float(min_lat) - expand_by, float(min_lon) - expand_by,
            float(max_lat) + expand_by, float(max_lon) + expand_by)


def filter_roads_by_bbox(roads: Iterable[Road], bbox: BBox) -> List[Road]:
    """
    Keep roads with at least one vertex inside ``bbox``.

    A cheap first pass before :func:`mark_roads_near_track`; roads that only
    cross the box without a vertex inside it are dropped.
    """
    min_lat, min_lon, max_lat, max_lon = bbox
    kept = []
    for road in roads:
        for c in road.coordinates:
            if min_lat <= c.lat <= max_lat and min_lon <= c.lon <= max_lon:
                kept.append(road)
                break
    return kept


def _road_geometry(road: Road, transformer: Transformer):
    if not road.coordinates:
        return None
    lats = np.fromiter((c.lat for c in road.coordinates), dtype=float)
    lons = np.fromiter((c.lon for c in road.coordinates), dtype=float)
    xs, ys = transformer.transform(lons, lats)
    if len(road.coordinates) == 1:
        return Point(float(xs[0]), float(ys[0]))
    return LineString(np.column_stack((xs, ys)))


def _classify_chunk(chunk: Sequence[Road], track_line, transformer: Transformer,
                    proximity_m: float) -> List[bool]:
    geoms = [_road_geometry(road, transformer) for road in chunk]
    flags = [False] * len(chunk)
    present = [i for i, g in enumerate(geoms) if g is not None]
    if present:
        near = shapely.dwithin(np.asarray([geoms[i] for i in present], dtype=object), track_line, proximity_m)
        for i, hit in zip(present, near):
            flags[i] = bool(hit)
    return flags


def mark_roads_near_track(
    roads: Sequence[Road],
    track: TrackLike,
    proximity_m: float = 200.0,
    simplify_tolerance_m: float = 5.0,
    n_chunks: int = 4,
    max_workers: Optional[int] = None,
) -> List[bool]:
    """
    Flag the roads that pass within ``proximity_m`` of a trajectory.

    The track is first simplified with Douglas-Peucker, then both the track and
    every road are projected into an Azimuthal Equidistant (AEQD) frame centred
    on the track so that distances are in meters. The road list is split into
    ``n_chunks`` independent chunks that are classified concurrently and merged
    by concatenation, so the returned flags line up with ``roads``.

    Parameters
    ----------
    roads : sequence of Road
        Candidate roads, typically already reduced with
        :func:`filter_roads_by_bbox`.
    track : sequence of TrackPoint, Coordinate or (lat, lon)
        Trajectory to test against.
    proximity_m : float, default=200.0
        Maximum distance between road and track for a road to count as used.
    simplify_tolerance_m : float, default=5.0
        Douglas-Peucker tolerance applied to the track before testing.
    n_chunks : int, default=4
        Number of shards the road list is split into.
    max_workers : int or None, default=None
        Thread pool size (defaults to ``n_chunks``).

    Returns
    -------
    list of bool
        One flag per road, in input order.

    Notes
    -----
    Classification of one road never depends on another, so sharding is safe.
    shapely releases the GIL in its vectorized predicates, which is what makes
    a thread pool worthwhile here.
    """
    # compression imports geometry only, no cycle back into utilities
    from roadsnap.preprocessing.compression import simplify

    roads = list(roads)
    if not roads:
        return []
    coords = [as_coordinate(p) for p in track]
    if not coords:
        return [False] * len(roads)

    start_time = time.perf_counter()
    simplified = simplify(coords, tolerance=simplify_tolerance_m)

    arr = np.asarray(simplified, dtype=float)
    transformer = _get_aeqd_transformer(float(arr[:, 0].mean()), float(arr[:, 1].mean()))
    xs, ys = transformer.transform(arr[:, 1], arr[:, 0])
    if len(simplified) == 1:
        track_line = Point(float(xs[0]), float(ys[0]))
    else:
        track_line = LineString(np.column_stack((xs, ys)))
    shapely.prepare(track_line)

    n_chunks = max(1, min(int(n_chunks), len(roads)))
    chunk_size = -(-len(roads) // n_chunks)
    chunks = [roads[i:i + chunk_size] for i in range(0, len(roads), chunk_size)]

    with ThreadPoolExecutor(max_workers=max_workers or len(chunks)) as pool:
        results = list(pool.map(
            lambda chunk: _classify_chunk(chunk, track_line, transformer, proximity_m),
            chunks,
        ))

    flags = [flag for chunk_flags in results for flag in chunk_flags]
    logger.info(
        "Marked %d of %d roads near the track in %.2fs (track simplified %d -> %d points)",
        sum(flags), len(flags), time.perf_counter() - start_time, len(coords), len(simplified),
    )
    return flags


def select_roads_for_matching(roads: Sequence[Road], flags: Sequence[bool],
                              min_roads: int = 50, extra_roads: int = 100,
                              max_roads: Optional[int] = None) -> List[Road]:
    """
    Choose the roads to build the matching index from.

    Roads flagged as near the track are always used. When fewer than
    ``min_roads`` are flagged, up to ``extra_roads`` unflagged roads are added
    so the matcher still has somewhere to snap to. ``max_roads`` caps the
    flagged roads kept.
    """
    if len(roads) != len(flags):
        raise ValueError("roads and flags must have the same length")
    used = [road for road, flag in zip(roads, flags) if flag]
    if max_roads is not None:
        used = used[:max_roads]
    if len(used) < min_roads:
        unused = [road for road, flag in zip(roads, flags) if not flag]
        logger.debug("Only %d roads near the track, adding up to %d others", len(used), extra_roads)
        used = used + unused[:extra_roads]
    return used


__all__ = [
    "oneway_from_tags",
    "direction_from_tags",
    "road_from_coordinates",
    "road_from_linestring",
    "roads_to_segments",
    "build_segment_index",
    "track_bounding_box",
    "filter_roads_by_bbox",
    "mark_roads_near_track",
    "select_roads_for_matching",
]
