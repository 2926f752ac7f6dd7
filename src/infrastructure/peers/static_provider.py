"""In-memory PeerLocationProvider.

Hosts push peer positions as they arrive from the mesh; the coverage engine
reads a snapshot per analysis.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from types import MappingProxyType

from domain.terrain.value_objects import GeoPoint

logger = logging.getLogger(__name__)


class StaticPeerLocationProvider:
    """Thread-safe map of peer id to last known location."""

    def __init__(self, peers: Mapping[str, GeoPoint] | None = None) -> None:
        self._peers: dict[str, GeoPoint] = dict(peers or {})
        self._lock = threading.Lock()

    def peer_locations(self) -> Mapping[str, GeoPoint]:
        with self._lock:
            return MappingProxyType(dict(self._peers))

    def update(self, peer_id: str, location: GeoPoint) -> None:
        with self._lock:
            self._peers[peer_id] = location
        logger.debug("Peer %s at (%.5f, %.5f)", peer_id, location.latitude, location.longitude)

    def remove(self, peer_id: str) -> None:
        with self._lock:
            self._peers.pop(peer_id, None)

    def clear(self) -> None:
        with self._lock:
            self._peers.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)
