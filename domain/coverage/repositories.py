"""Domain Port(s) for the Coverage context."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from domain.terrain.value_objects import GeoPoint


class PeerLocationProvider(Protocol):
    """Port for the latest known locations of network peers.

    Implementations return a snapshot; the caller may iterate it freely.
    """

    def peer_locations(self) -> Mapping[str, GeoPoint]:
        ...
