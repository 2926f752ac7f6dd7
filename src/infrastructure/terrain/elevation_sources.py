"""ElevationSource adapters.

- TerrainGridElevationSource: bilinear lookups over an in-memory TerrainGrid
- CachingElevationSource: bounded LRU in front of any ElevationSource
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict

from domain.terrain.errors import PointOutOfBoundsError
from domain.terrain.repositories import ElevationSource
from domain.terrain.services import bilinear_interpolate
from domain.terrain.value_objects import GeoPoint, TerrainGrid

logger = logging.getLogger(__name__)

DEFAULT_CACHE_PRECISION_DEG = 1e-4  # ~11 m of latitude


class TerrainGridElevationSource:
    """Elevation lookups over a loaded DEM.

    Points outside the grid are NoData (NaN) unless ``strict`` is set, in
    which case they raise PointOutOfBoundsError.
    """

    def __init__(self, grid: TerrainGrid, strict: bool = False) -> None:
        self.grid = grid
        self.strict = strict

    def elevation_at(self, latitude: float, longitude: float) -> float:
        point = GeoPoint(latitude=latitude, longitude=longitude)
        if not self.grid.bounds.contains(point):
            if self.strict:
                raise PointOutOfBoundsError(point, self.grid.bounds)
            return float("nan")
        elevation, _ = bilinear_interpolate(self.grid, point)
        return elevation


class CachingElevationSource:
    """Memoizes lookups on coordinates rounded to ``precision_deg``.

    Neighbouring cells of a coverage grid share most of their profile
    samples near the transmitter, so hit rates are high.
    """

    def __init__(
        self,
        source: ElevationSource,
        max_entries: int = 4096,
        precision_deg: float = DEFAULT_CACHE_PRECISION_DEG,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if precision_deg <= 0:
            raise ValueError("precision_deg must be positive")
        self.source = source
        self.max_entries = max_entries
        self.precision_deg = precision_deg
        self._entries: OrderedDict[tuple[int, int], float] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _key(self, latitude: float, longitude: float) -> tuple[int, int]:
        return (round(latitude / self.precision_deg), round(longitude / self.precision_deg))

    def elevation_at(self, latitude: float, longitude: float) -> float:
        key = self._key(latitude, longitude)
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self.hits += 1
                return self._entries[key]
            self.misses += 1

        # Looked up outside the lock; concurrent misses on one key are harmless
        elevation = self.source.elevation_at(latitude, longitude)

        with self._lock:
            self._entries[key] = elevation
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return elevation

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
