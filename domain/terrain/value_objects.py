"""Terrain Bounded Context - Value Objects.

Immutable data structures representing geographic concepts.
All validation occurs at construction time via Pydantic.
"""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# Numeric Constants
# ---------------------------------------------------------------------------
DISTANCE_TOLERANCE_M = 0.1  # 10 cm - for distance invariants


class BoundingBox(BaseModel):
    """Geographic extent in EPSG:4326 (Value Object).

    Used for DEM extents, coverage grid extents and map viewports.
    Invalid boxes cannot be instantiated.
    """

    min_x: float  # Western boundary (longitude)
    min_y: float  # Southern boundary (latitude)
    max_x: float  # Eastern boundary (longitude)
    max_y: float  # Northern boundary (latitude)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_bounds(self) -> "BoundingBox":
        if not (-180 <= self.min_x <= 180):
            raise ValueError(f"min_x longitude out of range: {self.min_x}")
        if not (-180 <= self.max_x <= 180):
            raise ValueError(f"max_x longitude out of range: {self.max_x}")
        if not (-90 <= self.min_y <= 90):
            raise ValueError(f"min_y latitude out of range: {self.min_y}")
        if not (-90 <= self.max_y <= 90):
            raise ValueError(f"max_y latitude out of range: {self.max_y}")
        if not (self.min_x < self.max_x):
            raise ValueError(
                f"Invalid x ordering: min_x={self.min_x} >= max_x={self.max_x}"
            )
        if not (self.min_y < self.max_y):
            raise ValueError(
                f"Invalid y ordering: min_y={self.min_y} >= max_y={self.max_y}"
            )
        return self

    @property
    def center(self) -> "GeoPoint":
        return GeoPoint(
            latitude=(self.min_y + self.max_y) / 2,
            longitude=(self.min_x + self.max_x) / 2,
        )

    def contains(self, point: "GeoPoint") -> bool:
        """Inclusive containment test."""
        return (
            self.min_x <= point.longitude <= self.max_x
            and self.min_y <= point.latitude <= self.max_y
        )

    def intersection(self, other: "BoundingBox") -> "BoundingBox | None":
        """Return the overlapping box, or None when the boxes do not overlap."""
        min_x = max(self.min_x, other.min_x)
        min_y = max(self.min_y, other.min_y)
        max_x = min(self.max_x, other.max_x)
        max_y = min(self.max_y, other.max_y)
        if min_x >= max_x or min_y >= max_y:
            return None
        return BoundingBox(min_x=min_x, min_y=min_y, max_x=max_x, max_y=max_y)


class TerrainGrid(BaseModel):
    """Immutable elevation grid with geographic metadata (Value Object).

    The data array is made read-only at construction time.
    """

    data: NDArray[np.float32]  # 2D float32 array (height x width), read-only
    bounds: BoundingBox  # Geographic extent in EPSG:4326
    crs: str  # Always "EPSG:4326"
    resolution: tuple[float, float]  # (x_res, y_res) absolute values in degrees
    source_crs: str | None = None  # Original CRS before normalization

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @model_validator(mode="after")
    def validate_grid(self) -> "TerrainGrid":
        if self.data.ndim != 2:
            raise ValueError(f"Data must be 2D, got {self.data.ndim}D")
        if self.data.shape[0] == 0 or self.data.shape[1] == 0:
            raise ValueError(f"Data cannot be empty: {self.data.shape}")
        if self.data.dtype != np.float32:
            raise ValueError(f"Data must be float32, got {self.data.dtype}")
        if self.crs != "EPSG:4326":
            raise ValueError(f"CRS must be EPSG:4326, got {self.crs}")
        if self.resolution[0] <= 0 or self.resolution[1] <= 0:
            raise ValueError(f"Resolution must be positive: {self.resolution}")
        if np.isnan(self.data).all():
            raise ValueError("Grid contains 100% NoData")

        # Owned, contiguous, frozen copy; caller arrays are never touched.
        immutable = np.array(self.data, dtype=np.float32, copy=True, order="C")
        immutable.flags.writeable = False
        object.__setattr__(self, "data", immutable)

        return self


class GeoPoint(BaseModel):
    """Geographic coordinate in WGS84 (Value Object)."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    model_config = ConfigDict(frozen=True)


class TerrainPoint(BaseModel):
    """Single elevation sample along a path (Value Object).

    ``elevation_m`` is NaN exactly when ``is_nodata`` is set.
    """

    distance_m: float = Field(ge=0)  # Distance from path start in meters
    elevation_m: float
    point: GeoPoint
    is_nodata: bool = False

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_nodata_consistency(self) -> "TerrainPoint":
        if self.is_nodata and not math.isnan(self.elevation_m):
            raise ValueError("is_nodata=True requires elevation_m=NaN")
        if not self.is_nodata and not math.isfinite(self.elevation_m):
            raise ValueError("is_nodata=False requires finite elevation_m")
        return self


class TerrainProfile(BaseModel):
    """Elevation profile between two points (Value Object).

    Derived once per transmitter/target path and shared by the occlusion and
    Fresnel computations.

    Invariants:
        - at least two points, first at distance 0 and equal to ``start``
        - last point equals ``end`` at ``total_distance_m`` (within tolerance)
        - distances non-decreasing; strictly increasing for non-zero paths
        - ``has_nodata`` matches the points

    A zero-length path (start == end) is represented by two points at
    distance 0.
    """

    start: GeoPoint
    end: GeoPoint
    points: tuple[TerrainPoint, ...]
    total_distance_m: float = Field(ge=0)
    step_m: float = Field(gt=0)  # Requested or derived spacing
    effective_step_m: float = Field(ge=0)  # total / (n - 1)
    has_nodata: bool

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_profile(self) -> "TerrainProfile":
        if len(self.points) < 2:
            raise ValueError(f"Profile must have >= 2 points, got {len(self.points)}")

        if self.points[0].distance_m != 0:
            raise ValueError(
                f"First point must be at distance 0, got {self.points[0].distance_m}"
            )

        strict = self.total_distance_m > 0
        for prev, cur in zip(self.points, self.points[1:]):
            if cur.distance_m < prev.distance_m or (
                strict and cur.distance_m == prev.distance_m
            ):
                raise ValueError("Points must be ordered by distance")

        if abs(self.points[-1].distance_m - self.total_distance_m) > DISTANCE_TOLERANCE_M:
            raise ValueError(
                f"Last point distance ({self.points[-1].distance_m:.3f}) must equal "
                f"total_distance_m ({self.total_distance_m:.3f}) within {DISTANCE_TOLERANCE_M}m"
            )

        if self.points[0].point != self.start:
            raise ValueError("First point must equal start")
        if self.points[-1].point != self.end:
            raise ValueError("Last point must equal end")

        actual_has_nodata = any(p.is_nodata for p in self.points)
        if self.has_nodata != actual_has_nodata:
            raise ValueError(
                f"has_nodata={self.has_nodata} but points say {actual_has_nodata}"
            )

        expected_effective = self.total_distance_m / (len(self.points) - 1)
        if abs(self.effective_step_m - expected_effective) > DISTANCE_TOLERANCE_M:
            raise ValueError(
                f"effective_step_m ({self.effective_step_m:.3f}) must equal "
                f"total/(n-1) ({expected_effective:.3f})"
            )

        return self

    def elevations(self) -> tuple[float, ...]:
        """Return elevation values (may contain NaN)."""
        return tuple(p.elevation_m for p in self.points)

    def distances(self) -> tuple[float, ...]:
        return tuple(p.distance_m for p in self.points)

    def nodata_count(self) -> int:
        return sum(1 for p in self.points if p.is_nodata)

    def nodata_ratio(self) -> float:
        """Return fraction of points that are NoData (0.0 to 1.0)."""
        return self.nodata_count() / len(self.points)

    @property
    def min_elevation_m(self) -> float:
        """Lowest valid elevation, NaN when every point is NoData."""
        valid = [p.elevation_m for p in self.points if not p.is_nodata]
        return min(valid) if valid else float("nan")

    @property
    def max_elevation_m(self) -> float:
        valid = [p.elevation_m for p in self.points if not p.is_nodata]
        return max(valid) if valid else float("nan")
