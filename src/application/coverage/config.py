"""Coverage engine configuration.

Every tunable of the engine in one validated, immutable structure.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from domain.coverage.evaluator import DEFAULT_MIN_CONTRIBUTION_PROBABILITY
from domain.coverage.grid_builder import (
    DEFAULT_MAX_GRID_DIMENSION,
    DEFAULT_PARTIAL_EVERY_ROWS,
    DEFAULT_REFINEMENT_MIN_ZOOM,
    DEFAULT_REFINEMENT_THRESHOLD,
)
from domain.coverage.peers import DEFAULT_MAX_HOPS, DEFAULT_RECEIVABILITY_THRESHOLD
from domain.coverage.propagation import (
    DEFAULT_K_FACTOR,
    DEFAULT_RX_SENSITIVITY_DBM,
    DEFAULT_TX_POWER_DBM,
    RadioModel,
)
from domain.coverage.value_objects import DEFAULT_FREQUENCY_HZ, DEFAULT_MAX_PEER_DISTANCE_M


class CoverageEngineSettings(BaseModel):
    """Settings for the coverage analysis service.

    Attributes:
        cache_ttl_s: Seconds a computed grid stays valid in the cache.
        cache_max_entries: Grids kept before the oldest is evicted.
        max_peer_distance_m: Range limit for relay links and cell evaluation.
        min_contribution_probability: Probability at which a transmitter is
            listed as contributing to a cell.
        peer_receivability_threshold: Free-space probability required for a
            relay hop.
        max_peer_hops: Relay chain length limit.
        partial_every_rows: Rows between partial grid publications.
        max_workers: Threads evaluating cells of one row (1 = sequential).
        max_grid_dimension: Cap on grid rows and columns.
        job_timeout_s: Wall-clock budget per analysis, None for unlimited.
        max_refinement_areas: Cells re-evaluated on a finer sub-grid after the
            main pass, nearest the centre first (0 = no refinement).
        refinement_threshold: Minimum probability for a cell to be refined.
        refinement_min_zoom: Zoom level below which refinement is skipped.
        elevation_cache_size: Entries in the elevation lookup cache.
    """

    cache_ttl_s: float = Field(default=30.0, gt=0)
    cache_max_entries: int = Field(default=10, ge=1)
    max_peer_distance_m: float = Field(default=DEFAULT_MAX_PEER_DISTANCE_M, gt=0)
    min_contribution_probability: float = Field(
        default=DEFAULT_MIN_CONTRIBUTION_PROBABILITY, ge=0, le=1
    )
    peer_receivability_threshold: float = Field(
        default=DEFAULT_RECEIVABILITY_THRESHOLD, ge=0, le=1
    )
    max_peer_hops: int = Field(default=DEFAULT_MAX_HOPS, ge=0)
    partial_every_rows: int = Field(default=DEFAULT_PARTIAL_EVERY_ROWS, ge=1)
    max_workers: int = Field(default=4, ge=1)
    max_grid_dimension: int = Field(default=DEFAULT_MAX_GRID_DIMENSION, ge=1)
    job_timeout_s: float | None = Field(default=None, gt=0)
    max_refinement_areas: int = Field(default=10, ge=0)
    refinement_threshold: float = Field(default=DEFAULT_REFINEMENT_THRESHOLD, ge=0, le=1)
    refinement_min_zoom: int = Field(default=DEFAULT_REFINEMENT_MIN_ZOOM, ge=0, le=24)
    frequency_hz: float = Field(default=DEFAULT_FREQUENCY_HZ, gt=0)
    tx_power_dbm: float = DEFAULT_TX_POWER_DBM
    receiver_sensitivity_dbm: float = DEFAULT_RX_SENSITIVITY_DBM
    k_factor: float = Field(default=DEFAULT_K_FACTOR, gt=0)
    elevation_cache_size: int = Field(default=4096, ge=0)

    model_config = ConfigDict(frozen=True)

    def radio_model(self) -> RadioModel:
        return RadioModel(
            frequency_hz=self.frequency_hz,
            tx_power_dbm=self.tx_power_dbm,
            receiver_sensitivity_dbm=self.receiver_sensitivity_dbm,
            k_factor=self.k_factor,
        )
