"""Coverage Bounded Context - Grid geometry and resolution policies.

Shared by the value objects (grid invariants) and the services (grid
construction), so both agree on cell counts to the last cell.
"""

from __future__ import annotations

import math

METERS_PER_DEGREE_LAT = 111_320.0
FEET_TO_METERS = 0.3048

# (minimum zoom, base resolution in meters), checked top-down
_ZOOM_RESOLUTIONS: tuple[tuple[int, float], ...] = (
    (20, 20.0),
    (18, 50.0),
    (16, 100.0),
    (14, 200.0),
    (12, 300.0),
    (10, 600.0),
    (8, 1000.0),
)
_FALLBACK_RESOLUTION_M = 1500.0

DETAIL_MULTIPLIERS: dict[str, float] = {"low": 3.0, "medium": 1.5, "high": 1.0}
DEFAULT_DETAIL_LEVEL = "medium"

# Absorbs float noise so an exact multiple does not gain a phantom cell
_CEIL_EPSILON = 1e-6


def normalize_detail_level(detail_level: str | None) -> str:
    """Map any detail level onto low/medium/high; unknown values mean medium."""
    if detail_level is None:
        return DEFAULT_DETAIL_LEVEL
    level = detail_level.strip().lower()
    return level if level in DETAIL_MULTIPLIERS else DEFAULT_DETAIL_LEVEL


def calculate_resolution(zoom_level: int, detail_level: str | None) -> float:
    """Grid resolution in meters for a map zoom level and detail level.

    >>> calculate_resolution(20, "high")
    20.0
    >>> calculate_resolution(8, "low")
    3000.0
    """
    base = _FALLBACK_RESOLUTION_M
    for min_zoom, resolution in _ZOOM_RESOLUTIONS:
        if zoom_level >= min_zoom:
            base = resolution
            break
    return base * DETAIL_MULTIPLIERS[normalize_detail_level(detail_level)]


def meters_per_degree_lon(latitude: float) -> float:
    # Clamp keeps polar cells finite
    return METERS_PER_DEGREE_LAT * max(math.cos(math.radians(latitude)), 1e-6)


def extent_m(min_x: float, min_y: float, max_x: float, max_y: float) -> tuple[float, float]:
    """(height_m, width_m) of a lon/lat box, longitude scaled at its mid latitude."""
    mid_lat = (min_y + max_y) / 2
    height = (max_y - min_y) * METERS_PER_DEGREE_LAT
    width = (max_x - min_x) * meters_per_degree_lon(mid_lat)
    return height, width


def cell_count(length_m: float, resolution_m: float) -> int:
    return max(1, math.ceil(length_m / resolution_m - _CEIL_EPSILON))


def grid_dimensions(
    min_x: float, min_y: float, max_x: float, max_y: float, resolution_m: float
) -> tuple[int, int]:
    """(rows, cols) = ceil(height/res) x ceil(width/res)."""
    height, width = extent_m(min_x, min_y, max_x, max_y)
    return cell_count(height, resolution_m), cell_count(width, resolution_m)
