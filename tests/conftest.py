"""Shared test doubles and fixtures.

Domain and application tests use in-memory elevation sources; only the
infrastructure tests touch real GeoTIFF files (written to tmp_path).
"""

from __future__ import annotations

import math
import threading
from collections.abc import Callable

import pytest


# ---------------------------------------------------------------------------
# Elevation source doubles
# ---------------------------------------------------------------------------
class FlatElevationSource:
    """Constant elevation everywhere."""

    def __init__(self, elevation_m: float = 100.0) -> None:
        self.elevation_m = elevation_m
        self.calls = 0
        self._lock = threading.Lock()

    def elevation_at(self, latitude: float, longitude: float) -> float:
        with self._lock:
            self.calls += 1
        return self.elevation_m


class RidgeElevationSource:
    """Flat terrain with a north-south ridge between two longitudes."""

    def __init__(
        self,
        ridge_min_lon: float,
        ridge_max_lon: float,
        ridge_height_m: float = 300.0,
        base_m: float = 100.0,
    ) -> None:
        self.ridge_min_lon = ridge_min_lon
        self.ridge_max_lon = ridge_max_lon
        self.ridge_height_m = ridge_height_m
        self.base_m = base_m

    def elevation_at(self, latitude: float, longitude: float) -> float:
        if self.ridge_min_lon <= longitude <= self.ridge_max_lon:
            return self.base_m + self.ridge_height_m
        return self.base_m


class FunctionElevationSource:
    """Elevation from an arbitrary ``(lat, lon) -> meters`` function."""

    def __init__(self, fn: Callable[[float, float], float]) -> None:
        self.fn = fn

    def elevation_at(self, latitude: float, longitude: float) -> float:
        return self.fn(latitude, longitude)


class FailingElevationSource:
    """Every lookup raises."""

    def __init__(self, exc: Exception | None = None) -> None:
        self.exc = exc or RuntimeError("DEM tile unavailable")

    def elevation_at(self, latitude: float, longitude: float) -> float:
        raise self.exc


class GatedElevationSource:
    """Blocks every lookup until ``release()``; signals when first entered."""

    def __init__(self, elevation_m: float = 100.0, timeout_s: float = 10.0) -> None:
        self.elevation_m = elevation_m
        self.timeout_s = timeout_s
        self.entered = threading.Event()
        self._gate = threading.Event()

    def release(self) -> None:
        self._gate.set()

    def elevation_at(self, latitude: float, longitude: float) -> float:
        self.entered.set()
        self._gate.wait(self.timeout_s)
        return self.elevation_m


class NoDataEastOfElevationSource:
    """NaN east of a longitude, constant elsewhere."""

    def __init__(self, longitude: float, elevation_m: float = 150.0) -> None:
        self.longitude = longitude
        self.elevation_m = elevation_m

    def elevation_at(self, latitude: float, longitude: float) -> float:
        return math.nan if longitude > self.longitude else self.elevation_m


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def flat_source() -> FlatElevationSource:
    return FlatElevationSource(100.0)


@pytest.fixture
def failing_source() -> FailingElevationSource:
    return FailingElevationSource()


@pytest.fixture
def gated_source():
    source = GatedElevationSource()
    yield source
    source.release()
