"""Coverage Bounded Context - Value Objects.

Immutable request, result and network structures for coverage analysis.
All validation occurs at construction time via Pydantic.
"""

from __future__ import annotations

import math
from collections.abc import Iterator

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from domain.coverage.policies import (
    FEET_TO_METERS,
    calculate_resolution,
    grid_dimensions,
    normalize_detail_level,
)
from domain.terrain.value_objects import BoundingBox, GeoPoint, TerrainProfile

DEFAULT_FREQUENCY_HZ = 915e6  # 915 MHz ISM band
DEFAULT_MAX_PEER_DISTANCE_M = 160_934.0  # 100 miles
DEFAULT_ANTENNA_HEIGHT_FT = 6.0
NO_SIGNAL_DBM = -140.0
PRIMARY_TRANSMITTER_ID = "user"


def _clamp_unit(value: object) -> float:
    v = float(value)  # type: ignore[arg-type]
    if math.isnan(v):
        return 0.0
    return min(1.0, max(0.0, v))


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------
class CoverageAnalysisParams(BaseModel):
    """Immutable description of one coverage request.

    ``resolution_m`` overrides the zoom/detail policy when given. Antenna
    heights are in feet, as entered by users.
    """

    center: GeoPoint
    radius_m: float = Field(gt=0)
    resolution_m: float | None = Field(default=None, gt=0)
    zoom_level: int = Field(ge=0, le=24)
    detail_level: str = "medium"
    include_peer_extension: bool = True
    user_antenna_height_ft: float = Field(default=DEFAULT_ANTENNA_HEIGHT_FT, ge=0)
    receiving_antenna_height_ft: float = Field(default=DEFAULT_ANTENNA_HEIGHT_FT, ge=0)
    max_peer_distance_m: float = Field(default=DEFAULT_MAX_PEER_DISTANCE_M, gt=0)

    model_config = ConfigDict(frozen=True)

    @field_validator("detail_level", mode="before")
    @classmethod
    def _normalize_detail(cls, value: object) -> str:
        return normalize_detail_level(value if isinstance(value, str) else None)

    @property
    def effective_resolution_m(self) -> float:
        if self.resolution_m is not None:
            return self.resolution_m
        return calculate_resolution(self.zoom_level, self.detail_level)

    @property
    def user_antenna_height_m(self) -> float:
        return self.user_antenna_height_ft * FEET_TO_METERS

    @property
    def receiving_antenna_height_m(self) -> float:
        return self.receiving_antenna_height_ft * FEET_TO_METERS


# ---------------------------------------------------------------------------
# Result cells and grids
# ---------------------------------------------------------------------------
class CoveragePoint(BaseModel):
    """Coverage estimate for one grid cell.

    Probability, blockage and occlusion are clamped into [0, 1].
    """

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    coverage_probability: float
    signal_strength_dbm: float = NO_SIGNAL_DBM
    fresnel_zone_blockage: float = 0.0
    terrain_occlusion: float = 0.0
    contributing_transmitters: tuple[str, ...] = ()
    distance_to_nearest_transmitter_m: float = Field(default=math.inf, ge=0)

    model_config = ConfigDict(frozen=True)

    @field_validator(
        "coverage_probability",
        "fresnel_zone_blockage",
        "terrain_occlusion",
        mode="before",
    )
    @classmethod
    def _clamp(cls, value: object) -> float:
        return _clamp_unit(value)

    @property
    def location(self) -> GeoPoint:
        return GeoPoint(latitude=self.latitude, longitude=self.longitude)


class CoverageGrid(BaseModel):
    """Row-major grid of coverage points; row 0 is the northern edge.

    A complete grid holds ceil(height/res) x ceil(width/res) cells. A partial
    grid holds every column but only the rows computed so far.
    """

    bounds: BoundingBox
    resolution_m: float = Field(gt=0)
    rows: tuple[tuple[CoveragePoint, ...], ...]
    created_at: float  # wall clock, seconds since epoch
    zoom_level: int = Field(ge=0, le=24)
    complete: bool = True

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_dimensions(self) -> "CoverageGrid":
        n_rows, n_cols = self.shape
        if self.complete and len(self.rows) != n_rows:
            raise ValueError(f"Complete grid needs {n_rows} rows, got {len(self.rows)}")
        if len(self.rows) > n_rows:
            raise ValueError(f"Grid has {len(self.rows)} rows, at most {n_rows} allowed")
        for i, row in enumerate(self.rows):
            if len(row) != n_cols:
                raise ValueError(f"Row {i} has {len(row)} cells, expected {n_cols}")
        return self

    @property
    def shape(self) -> tuple[int, int]:
        """Full (rows, cols) of the finished grid."""
        b = self.bounds
        return grid_dimensions(b.min_x, b.min_y, b.max_x, b.max_y, self.resolution_m)

    @property
    def cell_count(self) -> int:
        """Number of computed cells."""
        return sum(len(row) for row in self.rows)

    def points(self) -> Iterator[CoveragePoint]:
        for row in self.rows:
            yield from row


class CachedCoverageGrid(BaseModel):
    grid: CoverageGrid
    cached_at: float  # wall clock, seconds since epoch

    model_config = ConfigDict(frozen=True)


class CoverageStatistics(BaseModel):
    """Aggregate figures over a grid's cells."""

    total_points: int = Field(ge=0)
    covered_points: int = Field(ge=0)  # probability > 0.5
    good_coverage_points: int = Field(ge=0)  # probability > 0.8
    coverage_percentage: float = Field(ge=0, le=100)
    average_coverage: float
    min_coverage: float
    max_coverage: float

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Propagation
# ---------------------------------------------------------------------------
class FresnelZone(BaseModel):
    """First Fresnel zone along one transmitter/receiver path."""

    points: tuple[GeoPoint, ...]
    radii_m: tuple[float, ...]
    blockage: float
    profile: TerrainProfile
    frequency_hz: float = Field(default=DEFAULT_FREQUENCY_HZ, gt=0)

    model_config = ConfigDict(frozen=True)

    @field_validator("blockage", mode="before")
    @classmethod
    def _clamp(cls, value: object) -> float:
        return _clamp_unit(value)

    @model_validator(mode="after")
    def validate_lengths(self) -> "FresnelZone":
        if len(self.points) != len(self.radii_m):
            raise ValueError(
                f"points ({len(self.points)}) and radii_m ({len(self.radii_m)}) differ in length"
            )
        return self


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------
class Transmitter(BaseModel):
    """Candidate signal source for coverage cells."""

    id: str
    location: GeoPoint
    antenna_height_m: float = Field(default=0.0, ge=0)

    model_config = ConfigDict(frozen=True)


class NetworkPeer(BaseModel):
    """Peer reachable from the primary transmitter, possibly over relays."""

    id: str
    location: GeoPoint
    hop_count: int = Field(ge=1)
    route: tuple[str, ...]  # ids from the first relay to this peer
    link_probability: float = Field(ge=0, le=1)

    model_config = ConfigDict(frozen=True)
