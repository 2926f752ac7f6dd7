"""GeoTIFF adapter for TerrainRepository.

Loads single-band DEM rasters with rasterio, normalizes them to EPSG:4326
with NoData as NaN, and returns a domain TerrainGrid. GeoTiffElevationSource
wraps a loaded DEM as an ElevationSource for coverage analysis.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path

import numpy as np
import rasterio
from affine import Affine
from numpy.typing import NDArray
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.transform import array_bounds
from rasterio.warp import calculate_default_transform, reproject

from domain.terrain.errors import (
    AllNoDataError,
    InsufficientMemoryError,
    InvalidBoundsError,
    InvalidGeotransformError,
    InvalidRasterError,
    MissingCRSError,
)
from domain.terrain.value_objects import BoundingBox, TerrainGrid
from infrastructure.terrain.elevation_sources import TerrainGridElevationSource

logger = logging.getLogger(__name__)

_TARGET_CRS = CRS.from_epsg(4326)
_ALLOWED_SUFFIXES = (".tif", ".tiff")
_NODATA_WARN_PCT = 80.0


def _check_file(path: Path, max_bytes: int | None) -> None:
    if not path.exists():
        raise FileNotFoundError(str(path))
    if path.suffix.lower() not in _ALLOWED_SUFFIXES:
        raise InvalidRasterError(f"Unsupported file extension: {path.suffix}")
    try:
        if path.is_symlink():
            raise InvalidRasterError("Symlinks are not permitted")
        size = path.stat().st_size
    except OSError as e:
        # Filename only; absolute paths stay out of logs
        logger.error(
            "Failed to stat %s (errno=%s, strerror=%s)",
            path.name,
            getattr(e, "errno", "unknown"),
            getattr(e, "strerror", "unknown"),
        )
        raise
    if size == 0:
        raise InvalidRasterError("Empty file")
    # Compressed input can expand, but anything over twice the budget cannot fit
    if max_bytes is not None and size > max_bytes * 2:
        raise InsufficientMemoryError(
            f"File size {size}B exceeds 2x memory budget {max_bytes}B"
        )


def _check_transform(transform: Affine) -> None:
    coefficients = (transform.a, transform.b, transform.c, transform.d, transform.e, transform.f)
    if any(not math.isfinite(v) for v in coefficients):
        raise InvalidGeotransformError("Invalid (NaN/Inf) transform values")
    if transform.a == 0 or transform.e == 0:
        raise InvalidGeotransformError("Invalid transform scale (zero)")


def _check_budget(width: int, height: int, max_bytes: int | None) -> None:
    if max_bytes is None:
        return
    estimated = int(width) * int(height) * 4  # float32
    if estimated > max_bytes:
        raise InsufficientMemoryError(
            f"Estimated grid size {estimated}B exceeds budget {max_bytes}B"
        )


def _read_native(
    src: rasterio.io.DatasetReader, max_bytes: int | None
) -> tuple[NDArray[np.float32], Affine]:
    _check_budget(src.width, src.height, max_bytes)
    masked = src.read(1, masked=True, out_dtype="float32")
    data = np.ma.filled(masked.astype(np.float32), np.float32(np.nan))
    return data, src.transform


def _read_reprojected(
    src: rasterio.io.DatasetReader, max_bytes: int | None
) -> tuple[NDArray[np.float32], Affine]:
    left, bottom, right, top = src.bounds
    dst_transform, dst_width, dst_height = calculate_default_transform(
        src.crs, _TARGET_CRS, src.width, src.height, left, bottom, right, top
    )
    _check_budget(dst_width, dst_height, max_bytes)
    dst = np.full((dst_height, dst_width), np.nan, dtype=np.float32)
    reproject(
        source=rasterio.band(src, 1),
        destination=dst,
        src_transform=src.transform,
        src_crs=src.crs,
        dst_transform=dst_transform,
        dst_crs=_TARGET_CRS,
        resampling=Resampling.bilinear,
        src_nodata=src.nodata,
        dst_nodata=np.nan,
    )
    return dst, dst_transform


class GeoTiffTerrainAdapter:
    """Load DEMs from GeoTIFF files.

    Parameters
    ----------
    max_bytes: int | None
        Optional memory budget for the resulting float32 grid (height*width*4).
        Exceeding it raises InsufficientMemoryError before allocation.
    """

    def __init__(self, max_bytes: int | None = None) -> None:
        self.max_bytes = max_bytes

    def load_dem(self, file_path: Path | str) -> TerrainGrid:
        path = Path(file_path)
        _check_file(path, self.max_bytes)

        try:
            with rasterio.Env():
                with rasterio.open(path) as src:
                    if src.count != 1:
                        raise InvalidRasterError(f"Expected 1 band, got {src.count}")
                    if src.crs is None:
                        raise MissingCRSError("Raster has no CRS defined")
                    _check_transform(src.transform)

                    source_crs = src.crs.to_string()
                    if src.crs == _TARGET_CRS:
                        data, transform = _read_native(src, self.max_bytes)
                    else:
                        data, transform = _read_reprojected(src, self.max_bytes)
                        logger.info(
                            "DEM %s: Reprojected from %s to EPSG:4326", path.name, source_crs
                        )
        except PermissionError as e:
            raise PermissionError(path.name) from e
        except rasterio.errors.RasterioError as e:
            raise InvalidRasterError(f"Corrupted or invalid raster: {e}") from e
        except MemoryError as e:
            raise InsufficientMemoryError("Insufficient memory to load raster") from e

        return self._to_grid(path, data, transform, source_crs)

    @staticmethod
    def _to_grid(
        path: Path, data: NDArray[np.float32], transform: Affine, source_crs: str
    ) -> TerrainGrid:
        nodata = np.isnan(data)
        if nodata.all():
            raise AllNoDataError("Raster contains 100% NoData pixels - unusable")

        height, width = data.shape
        minx, miny, maxx, maxy = array_bounds(height, width, transform)
        try:
            bounds = BoundingBox(min_x=minx, min_y=miny, max_x=maxx, max_y=maxy)
        except ValueError as e:
            raise InvalidBoundsError(str(e)) from e

        nodata_pct = float(nodata.mean() * 100.0)
        if nodata_pct > _NODATA_WARN_PCT:
            logger.warning("DEM %s: %.1f%% NoData pixels detected", path.name, nodata_pct)
        logger.debug("DEM %s: Loaded %dx%d grid", path.name, width, height)

        return TerrainGrid(
            data=data,
            bounds=bounds,
            crs="EPSG:4326",
            resolution=(abs(transform.a), abs(transform.e)),
            source_crs=source_crs,
        )


class GeoTiffElevationSource(TerrainGridElevationSource):
    """ElevationSource backed by a DEM loaded eagerly from a GeoTIFF."""

    def __init__(
        self,
        file_path: Path | str,
        max_bytes: int | None = None,
        strict: bool = False,
    ) -> None:
        grid = GeoTiffTerrainAdapter(max_bytes=max_bytes).load_dem(file_path)
        super().__init__(grid, strict=strict)
