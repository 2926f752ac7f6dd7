"""Domain Port(s) for Terrain I/O.

Defines interfaces (Protocols) that infrastructure adapters must implement.
No concrete I/O here.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from .value_objects import TerrainGrid


class TerrainRepository(Protocol):
    """Port for obtaining terrain grids from external sources.

    Implementations live in infrastructure (e.g., GeoTIFF adapter).
    """

    def load_dem(self, file_path: Path | str) -> TerrainGrid:
        """Load a DEM and return a normalized TerrainGrid in EPSG:4326."""
        ...


class ElevationSource(Protocol):
    """Port for point elevation lookups.

    Implementations must be safe to call from several threads at once.
    """

    def elevation_at(self, latitude: float, longitude: float) -> float:
        """Return elevation in meters above sea level, NaN where unknown."""
        ...
