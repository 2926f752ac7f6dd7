"""Coverage Bounded Context - Peer network analysis.

Finds relay peers that can extend coverage: peers the primary transmitter
reaches directly, then peers those peers reach, up to a hop limit.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from domain.coverage.value_objects import NetworkPeer
from domain.terrain.services import geodesic_distance
from domain.terrain.value_objects import GeoPoint

logger = logging.getLogger(__name__)

DEFAULT_RECEIVABILITY_THRESHOLD = 0.5
DEFAULT_MAX_HOPS = 3


def analyze_peer_network(
    origin: GeoPoint,
    peers: Mapping[str, GeoPoint],
    max_distance_m: float,
    link_probability: Callable[[float], float],
    receivability_threshold: float = DEFAULT_RECEIVABILITY_THRESHOLD,
    max_hops: int = DEFAULT_MAX_HOPS,
) -> list[NetworkPeer]:
    """Return the peers reachable from ``origin`` within ``max_hops`` hops.

    A link exists when the hop distance is within ``max_distance_m`` and
    ``link_probability(distance)`` reaches the threshold. Each peer is
    reported once, at the first hop it becomes reachable, through its best
    link from the previous hop.
    """
    reached: dict[str, NetworkPeer] = {}
    # (location, route to it) for the nodes added in the previous hop
    frontier: list[tuple[GeoPoint, tuple[str, ...]]] = [(origin, ())]

    for hop in range(1, max_hops + 1):
        found: dict[str, NetworkPeer] = {}
        for peer_id, location in peers.items():
            if peer_id in reached:
                continue
            for relay_location, route in frontier:
                distance = geodesic_distance(relay_location, location)
                if distance > max_distance_m:
                    continue
                probability = link_probability(distance)
                if probability < receivability_threshold:
                    continue
                best = found.get(peer_id)
                if best is None or probability > best.link_probability:
                    found[peer_id] = NetworkPeer(
                        id=peer_id,
                        location=location,
                        hop_count=hop,
                        route=route + (peer_id,),
                        link_probability=probability,
                    )
        if not found:
            break
        reached.update(found)
        frontier = [(p.location, p.route) for p in found.values()]

    skipped = len(peers) - len(reached)
    if skipped:
        logger.debug("Peer analysis: %d of %d peers unreachable", skipped, len(peers))
    return sorted(reached.values(), key=lambda p: (p.hop_count, p.id))
