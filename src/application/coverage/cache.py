"""In-memory coverage grid cache with TTL and oldest-first eviction."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel, ConfigDict

from domain.coverage.value_objects import CachedCoverageGrid, CoverageGrid

logger = logging.getLogger(__name__)


class CacheStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"
    EXPIRED = "expired"


class CacheLookup(BaseModel):
    status: CacheStatus
    grid: CoverageGrid | None = None

    model_config = ConfigDict(frozen=True)


class CoverageCache:
    """Bounded key -> grid map.

    An entry is stale once ``now - cached_at > ttl_s`` and is dropped when
    read. Storing a new key into a full cache evicts the entry with the oldest
    ``cached_at``. All operations are serialized by a lock.
    """

    def __init__(
        self,
        max_entries: int = 10,
        ttl_s: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if ttl_s <= 0:
            raise ValueError("ttl_s must be positive")
        self.max_entries = max_entries
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[str, CachedCoverageGrid] = {}
        self._lock = threading.RLock()

    def lookup(self, key: str) -> CacheLookup:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return CacheLookup(status=CacheStatus.MISS)
            age = self._clock() - entry.cached_at
            if age > self.ttl_s:
                del self._entries[key]
                logger.debug("Cache entry %s expired after %.1fs", key, age)
                return CacheLookup(status=CacheStatus.EXPIRED)
            return CacheLookup(status=CacheStatus.HIT, grid=entry.grid)

    def get(self, key: str) -> CoverageGrid | None:
        return self.lookup(key).grid

    def put(self, key: str, grid: CoverageGrid) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                oldest = min(self._entries, key=lambda k: self._entries[k].cached_at)
                del self._entries[oldest]
                logger.debug("Cache full, evicted %s", oldest)
            self._entries[key] = CachedCoverageGrid(grid=grid, cached_at=self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries
