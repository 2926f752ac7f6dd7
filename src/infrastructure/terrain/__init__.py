"""Infrastructure adapters for the terrain bounded context.

DEM loading from GeoTIFF and ElevationSource implementations.
"""

from .elevation_sources import CachingElevationSource, TerrainGridElevationSource
from .geotiff_adapter import GeoTiffElevationSource, GeoTiffTerrainAdapter

__all__ = [
    "CachingElevationSource",
    "GeoTiffElevationSource",
    "GeoTiffTerrainAdapter",
    "TerrainGridElevationSource",
]
