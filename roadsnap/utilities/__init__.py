"""
Utilities module for the roadsnap library.

This module provides the geometry kernel, the spatial grid index over road
segments, and road network preparation helpers.
"""

from roadsnap.utilities.geometry import (
    geodesic_distance,
    distance_point_to_segment,
    project_point_onto_segment,
    heading_vector,
)
from roadsnap.utilities.spatial_index import SpatialGridIndex
from roadsnap.utilities.road_network import (
    oneway_from_tags,
    direction_from_tags,
    road_from_coordinates,
    road_from_linestring,
    roads_to_segments,
    build_segment_index,
    track_bounding_box,
    filter_roads_by_bbox,
    mark_roads_near_track,
    select_roads_for_matching,
)

__all__ = [
    # Geometry
    'geodesic_distance',
    'distance_point_to_segment',
    'project_point_onto_segment',
    'heading_vector',
    # Spatial index
    'SpatialGridIndex',
    # Road network functions
    'oneway_from_tags',
    'direction_from_tags',
    'road_from_coordinates',
    'road_from_linestring',
    'roads_to_segments',
    'build_segment_index',
    'track_bounding_box',
    'filter_roads_by_bbox',
    'mark_roads_near_track',
    'select_roads_for_matching',
]
