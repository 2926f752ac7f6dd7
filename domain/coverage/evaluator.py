"""Coverage Bounded Context - Coverage point evaluator.

Estimates coverage for a single cell from a set of candidate transmitters.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence

from domain.coverage.propagation import RadioModel
from domain.coverage.value_objects import NO_SIGNAL_DBM, CoveragePoint, Transmitter
from domain.terrain.repositories import ElevationSource
from domain.terrain.services import geodesic_distance, sample_terrain_profile
from domain.terrain.value_objects import GeoPoint, TerrainProfile

DEFAULT_MIN_CONTRIBUTION_PROBABILITY = 0.2

ProfileFetcher = Callable[[GeoPoint, GeoPoint], TerrainProfile]


class CoveragePointEvaluator:
    """Evaluate coverage at one location.

    Each in-range transmitter gets exactly one terrain profile, which feeds
    both the occlusion and Fresnel computations. The cell keeps the best
    candidate's figures; every candidate at or above
    ``min_contribution_probability`` is listed as a contributor.

    Parameters
    ----------
    elevation_source: ElevationSource
        Terrain lookups for the default profile fetcher.
    radio_model: RadioModel
        Frequency, power and sensitivity for link budgets.
    profile_fetcher: callable, optional
        ``(start, end) -> TerrainProfile`` replacing the default sampler.
    """

    def __init__(
        self,
        elevation_source: ElevationSource,
        radio_model: RadioModel | None = None,
        profile_fetcher: ProfileFetcher | None = None,
        min_contribution_probability: float = DEFAULT_MIN_CONTRIBUTION_PROBABILITY,
    ) -> None:
        self.elevation_source = elevation_source
        self.radio_model = radio_model or RadioModel()
        self.min_contribution_probability = min_contribution_probability
        self._fetch_profile = profile_fetcher or self._sample_profile

    def _sample_profile(self, start: GeoPoint, end: GeoPoint) -> TerrainProfile:
        return sample_terrain_profile(self.elevation_source, start, end)

    def evaluate(
        self,
        target: GeoPoint,
        transmitters: Sequence[Transmitter],
        rx_antenna_height_m: float,
        max_range_m: float,
    ) -> CoveragePoint:
        """Return the coverage estimate for ``target``.

        Transmitters beyond ``max_range_m`` are ignored. With no candidate in
        range the cell gets probability 0 and the no-signal level.
        """
        best: tuple[float, float, float, float] | None = None  # prob, signal, blk, occ
        contributors: list[tuple[float, str, float]] = []  # prob, id, distance

        for tx in transmitters:
            distance = geodesic_distance(tx.location, target)
            if distance > max_range_m:
                continue

            profile = self._fetch_profile(tx.location, target)
            path = self.radio_model.analyze(profile, tx.antenna_height_m, rx_antenna_height_m)
            blockage = path.fresnel_blockage
            occlusion = path.terrain_occlusion

            signal = self.radio_model.signal_strength_dbm(distance, blockage)
            probability = self.radio_model.link_probability(distance, blockage, occlusion)

            if best is None or probability > best[0]:
                best = (probability, signal, blockage, occlusion)
            if probability >= self.min_contribution_probability:
                contributors.append((probability, tx.id, distance))

        if best is None:
            return CoveragePoint(
                latitude=target.latitude,
                longitude=target.longitude,
                coverage_probability=0.0,
                signal_strength_dbm=NO_SIGNAL_DBM,
            )

        contributors.sort(key=lambda c: -c[0])
        nearest = min((c[2] for c in contributors), default=math.inf)
        probability, signal, blockage, occlusion = best
        return CoveragePoint(
            latitude=target.latitude,
            longitude=target.longitude,
            coverage_probability=probability,
            signal_strength_dbm=signal,
            fresnel_zone_blockage=blockage,
            terrain_occlusion=occlusion,
            contributing_transmitters=tuple(c[1] for c in contributors),
            distance_to_nearest_transmitter_m=nearest,
        )
