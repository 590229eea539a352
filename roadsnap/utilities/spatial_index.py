"""
Spatial grid index for road segments.

Road segments are bucketed into fixed-size latitude/longitude cells so that the
segments around a trajectory point can be found by looking at a small block of
cells instead of scanning the whole network. The index is built once per road
network snapshot and is read-only afterwards, so one instance can be shared by
any number of concurrent matching runs.
"""

import logging
import math
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from roadsnap.models import Coordinate, RoadSegment
from roadsnap.utilities.geometry import (
    distance_point_to_segment,
    geodesic_distance,
    meters_to_degrees,
    project_point_onto_segment,
)

logger = logging.getLogger(__name__)

CellKey = Tuple[int, int]


class SpatialGridIndex:
    """
    Bucket-by-cell index over an immutable sequence of road segments.

    A segment is registered under every cell its bounding box touches,
    expanded outward to whole cells (``floor(min / cell)`` .. ``ceil(max / cell)``),
    so a segment usually appears under several keys. Querying a point with
    radius ``r`` unions the ``(2r + 1)**2`` cells centred on the point's cell.

    Parameters
    ----------
    segments : sequence of RoadSegment
        Road network snapshot. Segment indices returned by queries refer to
        positions in this sequence.
    cell_size_deg : float, default=0.001
        Edge length of a grid cell in degrees (~111 m of latitude).

    Notes
    -----
    Use :meth:`build` rather than the constructor in application code; it is
    the documented entry point and logs the index size.

    An index over an empty collection is valid: every query returns an empty
    set and the matcher passes every point through unchanged.
    """

    __slots__ = ("_segments", "_cells", "_cell_size")

    def __init__(self, segments: Sequence[RoadSegment], cell_size_deg: float = 0.001):
        if cell_size_deg <= 0:
            raise ValueError("cell_size_deg must be positive")
        self._segments: Tuple[RoadSegment, ...] = tuple(segments)
        self._cell_size = float(cell_size_deg)

        buckets: Dict[CellKey, List[int]] = {}
        for idx, segment in enumerate(self._segments):
            for key in self._covered_cells(segment):
                buckets.setdefault(key, []).append(idx)
        self._cells: Mapping[CellKey, Tuple[int, ...]] = MappingProxyType(
            {key: tuple(indices) for key, indices in buckets.items()}
        )

    @classmethod
    def build(cls, segments: Iterable[RoadSegment], cell_size_deg: float = 0.001) -> "SpatialGridIndex":
        """
        Build an index over ``segments``.

        Examples
        --------
        >>> from roadsnap.models import Coordinate, RoadSegment
        >>> seg = RoadSegment(Coordinate(0.0, 0.0), Coordinate(0.0, 0.0003))
        >>> index = SpatialGridIndex.build([seg])
        >>> sorted(index.query(Coordinate(0.0, 0.0001), radius_cells=1))
        [0]
        """
        index = cls(list(segments), cell_size_deg)
        logger.debug(
            "Built spatial grid index: %d segments in %d cells (cell=%.5f deg)",
            len(index), index.cell_count, index.cell_size_deg,
        )
        return index

    # ------------------------------------------------------------------ helpers

    def _cell_of(self, lat: float, lon: float) -> CellKey:
        return math.floor(lat / self._cell_size), math.floor(lon / self._cell_size)

    def _covered_cells(self, segment: RoadSegment) -> Iterable[CellKey]:
        min_lat, min_lon, max_lat, max_lon = segment.bounds
        lat_lo = math.floor(min_lat / self._cell_size)
        lat_hi = math.ceil(max_lat / self._cell_size)
        lon_lo = math.floor(min_lon / self._cell_size)
        lon_hi = math.ceil(max_lon / self._cell_size)
        for i in range(lat_lo, lat_hi + 1):
            for j in range(lon_lo, lon_hi + 1):
                yield i, j

    # ------------------------------------------------------------------ accessors

    @property
    def segments(self) -> Tuple[RoadSegment, ...]:
        return self._segments

    @property
    def cell_size_deg(self) -> float:
        return self._cell_size

    @property
    def cell_size_m(self) -> float:
        """Cell height in meters, measured along the meridian at the equator."""
        return geodesic_distance(Coordinate(0.0, 0.0), Coordinate(self._cell_size, 0.0))

    @property
    def cell_count(self) -> int:
        return len(self._cells)

    @property
    def cells(self) -> Mapping[CellKey, Tuple[int, ...]]:
        """Read-only view of the cell -> segment indices mapping."""
        return self._cells

    def __len__(self) -> int:
        return len(self._segments)

    def __getitem__(self, idx: int) -> RoadSegment:
        return self._segments[idx]

    def is_empty(self) -> bool:
        return not self._segments

    # ------------------------------------------------------------------ queries

    def cells_for_distance(self, meters: float, lat: float = 0.0) -> int:
        """
        Neighbourhood radius (in cells) that covers ``meters`` around a point at ``lat``.

        One extra cell is added because the query point can sit anywhere
        inside its own cell.
        """
        dlat, dlon = meters_to_degrees(meters, lat)
        return int(math.ceil(max(dlat, dlon) / self._cell_size)) + 1

    def query(self, point: Coordinate, radius_cells: int) -> FrozenSet[int]:
        """
        Indices of all segments registered in the block of cells around ``point``.

        Parameters
        ----------
        point : Coordinate
            Query position.
        radius_cells : int
            Half-width of the square neighbourhood in cells; 0 looks at the
            point's own cell only.

        Returns
        -------
        frozenset of int
            Possibly empty. An empty result is a normal outcome, the caller
            decides how to widen the search.
        """
        if not self._cells:
            return frozenset()
        ci, cj = self._cell_of(point.lat, point.lon)
        radius = max(0, int(radius_cells))
        found = set()
        for di in range(-radius, radius + 1):
            for dj in range(-radius, radius + 1):
                bucket = self._cells.get((ci + di, cj + dj))
                if bucket:
                    found.update(bucket)
        return frozenset(found)

    def stride_sample(self, max_samples: int) -> List[int]:
        """Evenly strided segment indices across the whole collection."""
        n = len(self._segments)
        if n == 0:
            return []
        stride = max(1, n // max(1, max_samples))
        return list(range(0, n, stride))

    def nearest(self, point: Coordinate,
                max_distance_m: Optional[float] = None) -> Optional[Tuple[int, float, Coordinate]]:
        """
        Nearest segment to ``point`` with no direction or legality filtering.

        The search block is sized to cover ``max_distance_m``; when that block
        would be larger than the number of occupied cells (or no limit is
        given) every segment is scanned instead.

        Returns
        -------
        tuple of (segment_index, distance_m, projection) or None
            None when the index is empty or nothing lies within the limit.
        """
        if not self._segments:
            return None

        candidates: Iterable[int]
        if max_distance_m is None:
            candidates = range(len(self._segments))
        else:
            radius = self.cells_for_distance(max_distance_m, point.lat)
            if (2 * radius + 1) ** 2 > len(self._cells):
                candidates = range(len(self._segments))
            else:
                candidates = self.query(point, radius)

        best: Optional[Tuple[int, float, Coordinate]] = None
        for idx in candidates:
            seg = self._segments[idx]
            dist = distance_point_to_segment(point, seg.start, seg.end)
            if best is None or dist < best[1] or (dist == best[1] and idx < best[0]):
                best = (idx, dist, None)

        if best is None:
            return None
        if max_distance_m is not None and best[1] > max_distance_m:
            return None
        seg = self._segments[best[0]]
        return best[0], best[1], project_point_onto_segment(point, seg.start, seg.end)


__all__ = ["SpatialGridIndex", "CellKey"]
