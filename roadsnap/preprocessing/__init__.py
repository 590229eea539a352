"""
Trajectory preprocessing module for roadsnap.

This module provides the track clean-up steps applied around map matching:
- Compression: Remove duplicate fixes, Douglas-Peucker simplification, thinning
- Interpolation: Fill large gaps with evenly spaced points
- Filtering: Moving-average smoothing
- Track analysis: Turn detection and adaptive look-ahead
"""

# Compression
from roadsnap.preprocessing.compression import (
    remove_duplicates,
    remove_duplicates_df,
    simplify,
    simplify_df,
    thin_track,
    thin_track_df,
)

# Interpolation
from roadsnap.preprocessing.interpolation import fill_gaps, fill_gaps_df

# Filtering
from roadsnap.preprocessing.filtration import smooth_track, smooth_track_df

# Track analysis
from roadsnap.preprocessing.track_analysis import analyze_turns, look_ahead_distance, segment_complexity

__all__ = [
    # Compression
    'remove_duplicates',
    'remove_duplicates_df',
    'simplify',
    'simplify_df',
    'thin_track',
    'thin_track_df',
    # Interpolation
    'fill_gaps',
    'fill_gaps_df',
    # Filtering
    'smooth_track',
    'smooth_track_df',
    # Track analysis
    'analyze_turns',
    'look_ahead_distance',
    'segment_complexity',
]
