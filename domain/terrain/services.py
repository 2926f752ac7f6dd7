"""Terrain Bounded Context - Domain Services.

Pure domain logic for terrain calculations.
NO I/O operations - elevation data is reached through the ``ElevationSource``
port implemented under ``src/infrastructure/terrain``.
"""

from __future__ import annotations

import math

from pyproj import Geod

from domain.terrain.errors import ElevationUnavailableError, InvalidProfileError, TerrainError
from domain.terrain.repositories import ElevationSource
from domain.terrain.value_objects import (
    GeoPoint,
    TerrainGrid,
    TerrainPoint,
    TerrainProfile,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MAX_PROFILE_SAMPLES = 20  # Upper bound on elevation lookups per path
SHORT_PATH_M = 1_000.0
LONG_PATH_M = 10_000.0
SHORT_PATH_STEP_M = 100.0
MEDIUM_PATH_STEP_M = 200.0
LONG_PATH_STEP_M = 500.0

# WGS84 ellipsoid for geodesic calculations (same as GPS, EPSG:4326)
_geod = Geod(ellps="WGS84")


# ---------------------------------------------------------------------------
# Geodesic Distance
# ---------------------------------------------------------------------------
def geodesic_distance(start: GeoPoint, end: GeoPoint) -> float:
    """Calculate geodesic distance between two points in meters.

    Uses WGS84 ellipsoid for millimeter-level precision.
    """
    _, _, distance = _geod.inv(
        start.longitude, start.latitude, end.longitude, end.latitude
    )
    return float(abs(distance))


# ---------------------------------------------------------------------------
# Geodesic Path Interpolation
# ---------------------------------------------------------------------------
def interpolate_geodesic_path(
    start: GeoPoint, end: GeoPoint, num_intermediate: int
) -> list[GeoPoint]:
    """Interpolate points along geodesic path.

    Uses pyproj.Geod.npts for true geodesic interpolation (not linear in lat/lon).

    Args:
        start: Starting point
        end: Ending point
        num_intermediate: Number of points BETWEEN start and end

    Returns:
        List of all points: [start, ...intermediate..., end]
    """
    if num_intermediate <= 0:
        return [start, end]

    intermediate = _geod.npts(
        start.longitude, start.latitude, end.longitude, end.latitude, num_intermediate
    )

    result = [start]
    for lon, lat in intermediate:
        result.append(GeoPoint(latitude=lat, longitude=lon))
    result.append(end)

    return result


# ---------------------------------------------------------------------------
# Step Size Policy
# ---------------------------------------------------------------------------
def adaptive_step_m(total_distance_m: float) -> float:
    """Sample spacing for a path: finer for short links, coarser for long ones."""
    if total_distance_m < SHORT_PATH_M:
        return SHORT_PATH_STEP_M
    if total_distance_m > LONG_PATH_M:
        return LONG_PATH_STEP_M
    return MEDIUM_PATH_STEP_M


# ---------------------------------------------------------------------------
# Bilinear Interpolation
# ---------------------------------------------------------------------------
def bilinear_interpolate(grid: TerrainGrid, point: GeoPoint) -> tuple[float, bool]:
    """Interpolate elevation at arbitrary point using 4 nearest pixels.

    Returns (elevation, is_nodata).
    If any of the 4 neighbors is NaN, returns (NaN, True).

    Points on grid edges use clamped indices, so bilinear degrades to linear
    on edges and nearest on corners.
    """
    # Row 0 = north edge (max_y), so y is inverted
    px = (point.longitude - grid.bounds.min_x) / grid.resolution[0]
    py = (grid.bounds.max_y - point.latitude) / grid.resolution[1]

    height, width = grid.data.shape

    x0 = int(math.floor(px))
    y0 = int(math.floor(py))
    x1 = x0 + 1
    y1 = y0 + 1

    x0 = max(0, min(x0, width - 1))
    x1 = max(0, min(x1, width - 1))
    y0 = max(0, min(y0, height - 1))
    y1 = max(0, min(y1, height - 1))

    q11 = float(grid.data[y0, x0])  # top-left
    q21 = float(grid.data[y0, x1])  # top-right
    q12 = float(grid.data[y1, x0])  # bottom-left
    q22 = float(grid.data[y1, x1])  # bottom-right

    if math.isnan(q11) or math.isnan(q21) or math.isnan(q12) or math.isnan(q22):
        return (float("nan"), True)

    fx = min(max(px - math.floor(px), 0.0), 1.0)
    fy = min(max(py - math.floor(py), 0.0), 1.0)

    elevation = (
        q11 * (1 - fx) * (1 - fy)
        + q21 * fx * (1 - fy)
        + q12 * (1 - fx) * fy
        + q22 * fx * fy
    )

    return (float(elevation), False)


def _lookup_elevation(source: ElevationSource, point: GeoPoint) -> float:
    try:
        elevation = float(source.elevation_at(point.latitude, point.longitude))
    except TerrainError:
        raise
    except Exception as e:
        raise ElevationUnavailableError(
            f"Elevation lookup failed at ({point.latitude:.6f}, {point.longitude:.6f}): {e}"
        ) from e
    if math.isinf(elevation):
        raise ElevationUnavailableError(
            f"Non-finite elevation at ({point.latitude:.6f}, {point.longitude:.6f})"
        )
    return elevation


# ---------------------------------------------------------------------------
# Main Service: sample_terrain_profile
# ---------------------------------------------------------------------------
def sample_terrain_profile(
    source: ElevationSource,
    start: GeoPoint,
    end: GeoPoint,
    step_m: float | None = None,
    max_samples: int = MAX_PROFILE_SAMPLES,
) -> TerrainProfile:
    """Sample an elevation profile along the geodesic between two points.

    The number of samples is ``floor(total / step) + 1`` clamped to
    ``[2, max_samples]``; the spacing is then spread evenly over the path.
    Coincident endpoints yield a two-point, zero-length profile.

    Args:
        source: Elevation lookup port
        start: Starting point (typically the transmitter)
        end: Ending point (typically the coverage cell)
        step_m: Requested spacing in meters. If None, chosen from path length
        max_samples: Upper bound on elevation lookups

    Raises:
        InvalidProfileError: If step_m is not positive or max_samples < 2
        ElevationUnavailableError: If the source fails
    """
    if step_m is not None and step_m <= 0:
        raise InvalidProfileError("step_m must be positive")
    if max_samples < 2:
        raise InvalidProfileError(f"max_samples must be >= 2, got {max_samples}")

    total_distance = geodesic_distance(start, end)

    if step_m is None:
        step_m = adaptive_step_m(total_distance)

    if total_distance == 0:
        n_samples = 2
    else:
        n_samples = max(2, min(max_samples, int(math.floor(total_distance / step_m)) + 1))

    effective_step = total_distance / (n_samples - 1)

    path_points = interpolate_geodesic_path(start, end, n_samples - 2)

    points: list[TerrainPoint] = []
    has_nodata = False

    for i, point in enumerate(path_points):
        if i == len(path_points) - 1:
            distance = total_distance
        else:
            distance = i * effective_step

        elevation = _lookup_elevation(source, point)
        is_nodata = math.isnan(elevation)
        if is_nodata:
            has_nodata = True

        points.append(
            TerrainPoint(
                distance_m=distance,
                elevation_m=elevation,
                point=point,
                is_nodata=is_nodata,
            )
        )

    return TerrainProfile(
        start=start,
        end=end,
        points=tuple(points),
        total_distance_m=total_distance,
        step_m=step_m,
        effective_step_m=effective_step,
        has_nodata=has_nodata,
    )
