"""Coverage Bounded Context - Domain Services.

Grid geometry, cache keys and read-side queries over finished grids.
"""

from __future__ import annotations

import math

import numpy as np
from pyproj import Geod

from domain.coverage.policies import (
    METERS_PER_DEGREE_LAT,
    calculate_resolution,
    grid_dimensions,
    meters_per_degree_lon,
)
from domain.coverage.value_objects import (
    CoverageAnalysisParams,
    CoverageGrid,
    CoveragePoint,
    CoverageStatistics,
)
from domain.terrain.value_objects import BoundingBox, GeoPoint

__all__ = [
    "calculate_bounds",
    "calculate_resolution",
    "compute_statistics",
    "find_nearest_point",
    "generate_cache_key",
    "grid_dimensions",
]

COVERED_THRESHOLD = 0.5
GOOD_COVERAGE_THRESHOLD = 0.8
CACHE_KEY_RADIUS_STEP_M = 1000

_geod = Geod(ellps="WGS84")


def calculate_bounds(center: GeoPoint, radius_m: float) -> BoundingBox:
    """Square of half-width ``radius_m`` around ``center``, clamped to WGS84."""
    lat_delta = radius_m / METERS_PER_DEGREE_LAT
    lon_delta = radius_m / meters_per_degree_lon(center.latitude)
    return BoundingBox(
        min_x=max(-180.0, center.longitude - lon_delta),
        min_y=max(-90.0, center.latitude - lat_delta),
        max_x=min(180.0, center.longitude + lon_delta),
        max_y=min(90.0, center.latitude + lat_delta),
    )


def _key_coord(value: float) -> str:
    # + 0.0 folds -0.0 into 0.0
    return f"{round(value, 2) + 0.0:.2f}"


def _key_height(value: float) -> str:
    return f"{value:g}"


def generate_cache_key(params: CoverageAnalysisParams) -> str:
    """Deterministic cache key; nearby requests share an entry.

    Coordinates are rounded to 0.01 degree and the radius to the nearest
    kilometer, halves rounding up.
    """
    steps = math.floor(params.radius_m / CACHE_KEY_RADIUS_STEP_M + 0.5)
    radius = int(steps) * CACHE_KEY_RADIUS_STEP_M
    return "_".join(
        (
            _key_coord(params.center.latitude),
            _key_coord(params.center.longitude),
            str(radius),
            str(params.zoom_level),
            str(params.include_peer_extension).lower(),
            params.detail_level,
            _key_height(params.user_antenna_height_ft),
            _key_height(params.receiving_antenna_height_ft),
        )
    )


def compute_statistics(grid: CoverageGrid) -> CoverageStatistics:
    probabilities = np.fromiter(
        (p.coverage_probability for p in grid.points()), dtype=np.float64
    )
    total = int(probabilities.size)
    if total == 0:
        return CoverageStatistics(
            total_points=0,
            covered_points=0,
            good_coverage_points=0,
            coverage_percentage=0.0,
            average_coverage=0.0,
            min_coverage=0.0,
            max_coverage=0.0,
        )
    covered = int(np.count_nonzero(probabilities > COVERED_THRESHOLD))
    return CoverageStatistics(
        total_points=total,
        covered_points=covered,
        good_coverage_points=int(np.count_nonzero(probabilities > GOOD_COVERAGE_THRESHOLD)),
        coverage_percentage=100.0 * covered / total,
        average_coverage=float(probabilities.mean()),
        min_coverage=float(probabilities.min()),
        max_coverage=float(probabilities.max()),
    )


def find_nearest_point(grid: CoverageGrid, location: GeoPoint) -> CoveragePoint | None:
    """Cell nearest to ``location`` by geodesic distance, None for an empty grid."""
    cells = list(grid.points())
    if not cells:
        return None
    lats = np.array([c.latitude for c in cells], dtype=np.float64)
    lons = np.array([c.longitude for c in cells], dtype=np.float64)
    _, _, distances = _geod.inv(
        np.full_like(lons, location.longitude),
        np.full_like(lats, location.latitude),
        lons,
        lats,
    )
    return cells[int(np.argmin(np.abs(distances)))]
