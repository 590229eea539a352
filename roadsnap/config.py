"""
Central configuration for roadsnap.

Every tunable of the matching engine has a module-level default here. Defaults
can be overridden through ``ROADSNAP_*`` environment variables (malformed values
are ignored and the built-in default is kept), and per run through
:class:`MatchingConfig`, whose field defaults are these constants.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# ---------------------------------------------------------------------------
# Candidate search
# ---------------------------------------------------------------------------
# Soft matching radius in meters; candidates farther away are never scored.
MAX_DISTANCE_M = _env_float("ROADSNAP_MAX_DISTANCE_M", 30.0)

# Grid cell size of the spatial index in degrees (~111 m of latitude).
CELL_SIZE_DEG = _env_float("ROADSNAP_CELL_SIZE_DEG", 0.001)

# Neighbourhood radius (in cells) with and without a previously matched segment.
COLD_SEARCH_RADIUS = _env_int("ROADSNAP_COLD_SEARCH_RADIUS", 3)
TRACKING_SEARCH_RADIUS = _env_int("ROADSNAP_TRACKING_SEARCH_RADIUS", 2)
MAX_SEARCH_RADIUS = _env_int("ROADSNAP_MAX_SEARCH_RADIUS", 8)

# Upper bound on segments sampled when every index lookup came back empty.
FALLBACK_SAMPLE_SIZE = _env_int("ROADSNAP_FALLBACK_SAMPLE_SIZE", 500)

# ---------------------------------------------------------------------------
# Forced snapping
# ---------------------------------------------------------------------------
FORCE_SNAP_TO_ROAD = _env_bool("ROADSNAP_FORCE_SNAP_TO_ROAD", True)
MAX_FORCE_SNAP_DISTANCE_M = _env_float("ROADSNAP_MAX_FORCE_SNAP_DISTANCE_M", 50.0)

# Projections closer than this to a segment endpoint are moved onto it (0 = off).
ENDPOINT_SNAP_M = _env_float("ROADSNAP_ENDPOINT_SNAP_M", 0.0)

# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------
MAX_CONNECTION_DISTANCE_M = _env_float("ROADSNAP_MAX_CONNECTION_DISTANCE_M", 50.0)
MAX_CONNECTED_SEGMENTS = _env_int("ROADSNAP_MAX_CONNECTED_SEGMENTS", 20)

# ---------------------------------------------------------------------------
# Drift correction
# ---------------------------------------------------------------------------
OFFSET_WINDOW = _env_int("ROADSNAP_OFFSET_WINDOW", 10)
MAX_DRIFT_M = _env_float("ROADSNAP_MAX_DRIFT_M", 10.0)

# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------
REMOVE_DUPLICATES = _env_bool("ROADSNAP_REMOVE_DUPLICATES", True)
FILL_GAPS = _env_bool("ROADSNAP_FILL_GAPS", True)
SIMPLIFY_TRACK = _env_bool("ROADSNAP_SIMPLIFY_TRACK", False)
DUPLICATE_THRESHOLD_M = _env_float("ROADSNAP_DUPLICATE_THRESHOLD_M", 0.1)
MAX_GAP_DISTANCE_M = _env_float("ROADSNAP_MAX_GAP_DISTANCE_M", 50.0)
MAX_POINTS_TO_ADD = _env_int("ROADSNAP_MAX_POINTS_TO_ADD", 5)
SIMPLIFY_TOLERANCE_M = _env_float("ROADSNAP_SIMPLIFY_TOLERANCE_M", 5.0)

# ---------------------------------------------------------------------------
# One-way handling
# ---------------------------------------------------------------------------
STRICT_ONEWAY = _env_bool("ROADSNAP_STRICT_ONEWAY", True)
WRONG_WAY_PENALTY = _env_float("ROADSNAP_WRONG_WAY_PENALTY", 10.0)

# ---------------------------------------------------------------------------
# Probabilistic (HMM-style) scorer
# ---------------------------------------------------------------------------
HMM_SIGMA_M = _env_float("ROADSNAP_HMM_SIGMA_M", 50.0)
HMM_CONNECTED_TRANSITION = _env_float("ROADSNAP_HMM_CONNECTED_TRANSITION", 0.9)
HMM_OTHER_TRANSITION = _env_float("ROADSNAP_HMM_OTHER_TRANSITION", 0.1)
HMM_MAX_CANDIDATES = _env_int("ROADSNAP_HMM_MAX_CANDIDATES", 5)

# Candidates whose travel direction differs from the movement by more than this are dropped.
HMM_MAX_HEADING_DEG = _env_float("ROADSNAP_HMM_MAX_HEADING_DEG", 30.0)


@dataclass(slots=True, frozen=True)
class ScoringWeights:
    """Weights of the composite candidate score."""

    proximity_multiplier: float = 2.0
    heading_weight: float = 3.0
    look_ahead_weight: float = 2.0
    same_segment_bonus: float = 5.0
    connected_bonus: float = 3.0


@dataclass(slots=True, frozen=True)
class MatchingConfig:
    """Tunable parameters of a single matching run.

    Distances are in meters unless the name says otherwise. Instances are
    immutable; use :meth:`with_overrides` to derive a modified copy.
    """

    max_distance: float = MAX_DISTANCE_M
    force_snap_to_road: bool = FORCE_SNAP_TO_ROAD
    max_force_snap_distance: float = MAX_FORCE_SNAP_DISTANCE_M
    remove_duplicates: bool = REMOVE_DUPLICATES
    fill_gaps: bool = FILL_GAPS
    simplify_track: bool = SIMPLIFY_TRACK

    cell_size_deg: float = CELL_SIZE_DEG
    cold_search_radius: int = COLD_SEARCH_RADIUS
    tracking_search_radius: int = TRACKING_SEARCH_RADIUS
    max_search_radius: int = MAX_SEARCH_RADIUS
    fallback_sample_size: int = FALLBACK_SAMPLE_SIZE
    endpoint_snap_m: float = ENDPOINT_SNAP_M

    max_connection_distance: float = MAX_CONNECTION_DISTANCE_M
    max_connected: int = MAX_CONNECTED_SEGMENTS

    offset_window: int = OFFSET_WINDOW
    max_drift_m: float = MAX_DRIFT_M

    duplicate_threshold_m: float = DUPLICATE_THRESHOLD_M
    max_gap_distance: float = MAX_GAP_DISTANCE_M
    max_points_to_add: int = MAX_POINTS_TO_ADD
    simplify_tolerance_m: float = SIMPLIFY_TOLERANCE_M

    strict_oneway: bool = STRICT_ONEWAY
    wrong_way_penalty: float = WRONG_WAY_PENALTY
    weights: ScoringWeights = field(default_factory=ScoringWeights)

    hmm_sigma: float = HMM_SIGMA_M
    hmm_connected_transition: float = HMM_CONNECTED_TRANSITION
    hmm_other_transition: float = HMM_OTHER_TRANSITION
    hmm_max_candidates: int = HMM_MAX_CANDIDATES
    hmm_max_heading_deg: float = HMM_MAX_HEADING_DEG

    def __post_init__(self) -> None:
        positive = (
            "max_distance",
            "max_force_snap_distance",
            "cell_size_deg",
            "max_connection_distance",
            "max_gap_distance",
            "hmm_sigma",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        non_negative = (
            "max_drift_m",
            "duplicate_threshold_m",
            "simplify_tolerance_m",
            "endpoint_snap_m",
            "wrong_way_penalty",
        )
        for name in non_negative:
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.tracking_search_radius < 0 or self.cold_search_radius < 0:
            raise ValueError("search radii must not be negative")
        if self.max_search_radius < max(self.cold_search_radius, self.tracking_search_radius):
            raise ValueError("max_search_radius must be >= the cold and tracking radii")
        if self.offset_window < 1:
            raise ValueError("offset_window must be >= 1")
        if self.max_points_to_add < 1 or self.max_connected < 1 or self.hmm_max_candidates < 1:
            raise ValueError("max_points_to_add, max_connected and hmm_max_candidates must be >= 1")
        if self.fallback_sample_size < 1:
            raise ValueError("fallback_sample_size must be >= 1")
        for name in ("hmm_connected_transition", "hmm_other_transition"):
            if not 0 < getattr(self, name) <= 1:
                raise ValueError(f"{name} must be in (0, 1]")
        if not 0 <= self.hmm_max_heading_deg <= 180:
            raise ValueError("hmm_max_heading_deg must be in [0, 180]")

    def with_overrides(self, **overrides) -> "MatchingConfig":
        """Return a copy with the given fields replaced.

        Unknown keys raise ``ValueError`` instead of being silently dropped.
        """
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown matching parameters: {', '.join(unknown)}")
        return replace(self, **overrides)


DEFAULT_CONFIG = MatchingConfig()


__all__ = [
    "MatchingConfig",
    "ScoringWeights",
    "DEFAULT_CONFIG",
]
