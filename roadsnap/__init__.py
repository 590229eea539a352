"""
roadsnap - Snap noisy GPS trajectories onto a road network.

roadsnap matches an ordered sequence of GPS fixes to a collection of road
segments, producing a corrected trajectory that follows the roads.

Components
----------
- **matching**: Sequential matcher with drift correction, HMM-style scorer, DataFrame entry point
- **preprocessing**: Track clean-up (duplicates, gap filling, simplification, smoothing, turn analysis)
- **utilities**: Geometry kernel, spatial grid index, road network preparation
- **config**: Tunable defaults with ``ROADSNAP_*`` environment overrides

Quick Start
-----------
```python
import roadsnap as rs

# Build roads from coordinates and OSM-style tags
roads = [
    rs.utilities.road_from_coordinates(coords, tags={"oneway": "yes"})
    for coords in ways
]

# Keep the roads near the track and index them once
flags = rs.utilities.mark_roads_near_track(roads, track)
index = rs.utilities.build_segment_index(rs.utilities.select_roads_for_matching(roads, flags))

# Match a single track
result = rs.matching.match_track(track, index, max_distance=30)
print(result.coordinates, result.matched_ratio)

# Or a DataFrame (pandas or polars)
matched_df = rs.matching.snap_to_roads(df, index, lat_col="lat", lon_col="lon")

# Many independent tracks against the same index
results = rs.matching.match_many([track_a, track_b], index, verbose=True)
```
"""

from roadsnap._version import __version__, __version_info__
from roadsnap import matching, preprocessing, utilities
from roadsnap.config import DEFAULT_CONFIG, MatchingConfig, ScoringWeights
from roadsnap.models import Coordinate, MatchResult, Road, RoadSegment, TrackPoint

__all__ = [
    '__version__',
    '__version_info__',
    'matching',
    'preprocessing',
    'utilities',
    'MatchingConfig',
    'ScoringWeights',
    'DEFAULT_CONFIG',
    'Coordinate',
    'TrackPoint',
    'RoadSegment',
    'Road',
    'MatchResult',
]
