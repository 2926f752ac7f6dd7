"""Coverage Bounded Context - Coverage grid builder.

Turns a CoverageAnalysisParams into a CoverageGrid, row by row, reporting
through a stream of typed events (see ``domain.coverage.events``).
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Generator, Iterator
from concurrent.futures import ThreadPoolExecutor

from domain.coverage.errors import CoverageAnalysisError
from domain.coverage.evaluator import CoveragePointEvaluator
from domain.coverage.events import (
    CancellationToken,
    CompletedEvent,
    GridEvent,
    PartialGridEvent,
    ProgressEvent,
)
from domain.coverage.peers import (
    DEFAULT_MAX_HOPS,
    DEFAULT_RECEIVABILITY_THRESHOLD,
    analyze_peer_network,
)
from domain.coverage.policies import (
    METERS_PER_DEGREE_LAT,
    extent_m,
    grid_dimensions,
    meters_per_degree_lon,
)
from domain.coverage.repositories import PeerLocationProvider
from domain.coverage.services import calculate_bounds
from domain.coverage.value_objects import (
    PRIMARY_TRANSMITTER_ID,
    CoverageAnalysisParams,
    CoverageGrid,
    CoveragePoint,
    Transmitter,
)
from domain.terrain.errors import TerrainError
from domain.terrain.value_objects import BoundingBox, GeoPoint

logger = logging.getLogger(__name__)

DEFAULT_MAX_GRID_DIMENSION = 100
DEFAULT_PARTIAL_EVERY_ROWS = 5
DEFAULT_REFINEMENT_THRESHOLD = 0.4
DEFAULT_REFINEMENT_MIN_ZOOM = 14

# Progress milestones
_PROGRESS_PEERS = 0.05
_PROGRESS_ROWS_START = 0.1
_PROGRESS_ROWS_SPAN = 0.85
_PROGRESS_REFINE_START = _PROGRESS_ROWS_START + _PROGRESS_ROWS_SPAN
_PROGRESS_REFINE_SPAN = 0.04


class CoverageGridBuilder:
    """Build coverage grids from analysis parameters.

    Parameters
    ----------
    evaluator: CoveragePointEvaluator
        Per-cell coverage estimator.
    peer_provider: PeerLocationProvider | None
        Source of relay peers; peer extension is skipped without one.
    partial_every_rows: int
        Emit a partial grid after this many completed rows.
    max_workers: int
        Cells of one row are evaluated concurrently when greater than 1.
    max_grid_dimension: int
        Resolution is coarsened so neither grid side exceeds this.
    timeout_s: float | None
        Wall-clock budget for one build, checked between rows.
    max_refinement_areas: int
        Cells re-evaluated on a 2x2 sub-grid once all rows are done; 0
        disables refinement.
    refinement_threshold: float
        Only cells at or above this probability are refined.
    refinement_min_zoom: int
        Refinement is skipped for coarser zoom levels.
    """

    def __init__(
        self,
        evaluator: CoveragePointEvaluator,
        peer_provider: PeerLocationProvider | None = None,
        *,
        partial_every_rows: int = DEFAULT_PARTIAL_EVERY_ROWS,
        max_workers: int = 1,
        max_grid_dimension: int = DEFAULT_MAX_GRID_DIMENSION,
        peer_receivability_threshold: float = DEFAULT_RECEIVABILITY_THRESHOLD,
        max_peer_hops: int = DEFAULT_MAX_HOPS,
        timeout_s: float | None = None,
        max_refinement_areas: int = 0,
        refinement_threshold: float = DEFAULT_REFINEMENT_THRESHOLD,
        refinement_min_zoom: int = DEFAULT_REFINEMENT_MIN_ZOOM,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if partial_every_rows < 1:
            raise ValueError("partial_every_rows must be >= 1")
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if max_grid_dimension < 1:
            raise ValueError("max_grid_dimension must be >= 1")
        if max_refinement_areas < 0:
            raise ValueError("max_refinement_areas must be >= 0")
        self.evaluator = evaluator
        self.peer_provider = peer_provider
        self.partial_every_rows = partial_every_rows
        self.max_workers = max_workers
        self.max_grid_dimension = max_grid_dimension
        self.peer_receivability_threshold = peer_receivability_threshold
        self.max_peer_hops = max_peer_hops
        self.timeout_s = timeout_s
        self.max_refinement_areas = max_refinement_areas
        self.refinement_threshold = refinement_threshold
        self.refinement_min_zoom = refinement_min_zoom
        self._clock = clock

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------
    def analysis_bounds(
        self, params: CoverageAnalysisParams, viewport_bounds: BoundingBox | None = None
    ) -> BoundingBox:
        bounds = calculate_bounds(params.center, params.radius_m)
        if viewport_bounds is None:
            return bounds
        clipped = bounds.intersection(viewport_bounds)
        if clipped is None:
            raise CoverageAnalysisError("Viewport does not intersect the analysis area")
        return clipped

    def fit_resolution(self, bounds: BoundingBox, resolution_m: float) -> float:
        """Coarsen ``resolution_m`` until the grid fits the dimension cap."""
        height, width = extent_m(bounds.min_x, bounds.min_y, bounds.max_x, bounds.max_y)
        longest = max(height, width)
        if longest / resolution_m > self.max_grid_dimension:
            fitted = longest / self.max_grid_dimension
            logger.debug(
                "Resolution %.1fm exceeds grid cap %d, using %.1fm",
                resolution_m,
                self.max_grid_dimension,
                fitted,
            )
            return fitted
        return resolution_m

    # ------------------------------------------------------------------
    # Transmitters
    # ------------------------------------------------------------------
    def candidate_transmitters(self, params: CoverageAnalysisParams) -> list[Transmitter]:
        transmitters = [
            Transmitter(
                id=PRIMARY_TRANSMITTER_ID,
                location=params.center,
                antenna_height_m=params.user_antenna_height_m,
            )
        ]
        if not params.include_peer_extension or self.peer_provider is None:
            return transmitters

        locations = {
            peer_id: location
            for peer_id, location in self.peer_provider.peer_locations().items()
            if peer_id != PRIMARY_TRANSMITTER_ID
        }
        peers = analyze_peer_network(
            params.center,
            locations,
            params.max_peer_distance_m,
            self.evaluator.radio_model.link_probability,
            receivability_threshold=self.peer_receivability_threshold,
            max_hops=self.max_peer_hops,
        )
        logger.info("Peer extension: %d of %d peers reachable", len(peers), len(locations))
        transmitters.extend(
            Transmitter(
                id=peer.id,
                location=peer.location,
                antenna_height_m=params.receiving_antenna_height_m,
            )
            for peer in peers
        )
        return transmitters

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------
    def iter_build(
        self,
        params: CoverageAnalysisParams,
        viewport_bounds: BoundingBox | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> Iterator[GridEvent]:
        """Build a grid lazily, yielding progress, partial grids and the result.

        Raises:
            AnalysisCancelledError: The token was cancelled between rows or
                refined areas
            CoverageAnalysisError: Terrain failure, empty viewport or timeout
        """
        token = cancel_token or CancellationToken()
        started = self._clock()

        yield ProgressEvent(fraction=0.0, message="Initializing coverage analysis...")

        bounds = self.analysis_bounds(params, viewport_bounds)
        resolution = self.fit_resolution(bounds, params.effective_resolution_m)
        n_rows, n_cols = grid_dimensions(
            bounds.min_x, bounds.min_y, bounds.max_x, bounds.max_y, resolution
        )
        total_cells = n_rows * n_cols
        logger.info(
            "Coverage build: %dx%d grid at %.1fm around (%.5f, %.5f)",
            n_rows,
            n_cols,
            resolution,
            params.center.latitude,
            params.center.longitude,
        )

        token.raise_if_cancelled()
        transmitters = self.candidate_transmitters(params)
        yield ProgressEvent(fraction=_PROGRESS_PEERS, message="Analyzing peer network...")

        lat_step = resolution / METERS_PER_DEGREE_LAT
        lon_step = resolution / meters_per_degree_lon(bounds.center.latitude)
        longitudes = [
            min(bounds.max_x, bounds.min_x + (j + 0.5) * lon_step) for j in range(n_cols)
        ]
        rx_height = params.receiving_antenna_height_m
        max_range = params.max_peer_distance_m

        def evaluate(target: GeoPoint) -> CoveragePoint:
            return self.evaluator.evaluate(target, transmitters, rx_height, max_range)

        rows: list[tuple[CoveragePoint, ...]] = []
        executor = ThreadPoolExecutor(max_workers=self.max_workers) if self.max_workers > 1 else None
        try:
            for i in range(n_rows):
                token.raise_if_cancelled()
                self._check_timeout(started)

                latitude = max(bounds.min_y, bounds.max_y - (i + 0.5) * lat_step)
                targets = [GeoPoint(latitude=latitude, longitude=lon) for lon in longitudes]
                if executor is None:
                    row = tuple(evaluate(t) for t in targets)
                else:
                    row = tuple(executor.map(evaluate, targets))
                rows.append(row)

                done = i + 1
                yield ProgressEvent(
                    fraction=_PROGRESS_ROWS_START + _PROGRESS_ROWS_SPAN * done / n_rows,
                    message=f"Calculating coverage... ({done * n_cols}/{total_cells} points)",
                )
                if done < n_rows and done % self.partial_every_rows == 0:
                    yield PartialGridEvent(
                        grid=self._grid(bounds, resolution, rows, params, complete=False)
                    )

            if self._refinement_applies(params):
                rows = yield from self._refine(
                    rows, bounds, lat_step / 4, lon_step / 4, evaluate, executor, token, started
                )
        except TerrainError as e:
            raise CoverageAnalysisError(f"Failed to calculate coverage: {e}") from e
        finally:
            if executor is not None:
                executor.shutdown(wait=True, cancel_futures=True)

        token.raise_if_cancelled()
        grid = self._grid(bounds, resolution, rows, params, complete=True)
        logger.info(
            "Coverage build complete: %d cells in %.2fs",
            grid.cell_count,
            self._clock() - started,
        )
        yield ProgressEvent(fraction=1.0, message="Coverage analysis complete")
        yield CompletedEvent(grid=grid)

    def build(
        self,
        params: CoverageAnalysisParams,
        viewport_bounds: BoundingBox | None = None,
        cancel_token: CancellationToken | None = None,
        on_progress: Callable[[float, str], None] | None = None,
        on_partial: Callable[[CoverageGrid], None] | None = None,
    ) -> CoverageGrid:
        """Build a grid synchronously, forwarding events to the callbacks."""
        for event in self.iter_build(params, viewport_bounds, cancel_token):
            if isinstance(event, ProgressEvent):
                if on_progress is not None:
                    on_progress(event.fraction, event.message)
            elif isinstance(event, PartialGridEvent):
                if on_partial is not None:
                    on_partial(event.grid)
            elif isinstance(event, CompletedEvent):
                return event.grid
        raise CoverageAnalysisError("Coverage build ended without a result")

    def _refinement_applies(self, params: CoverageAnalysisParams) -> bool:
        return self.max_refinement_areas > 0 and params.zoom_level >= self.refinement_min_zoom

    def _refine(
        self,
        rows: list[tuple[CoveragePoint, ...]],
        bounds: BoundingBox,
        lat_offset: float,
        lon_offset: float,
        evaluate: Callable[[GeoPoint], CoveragePoint],
        executor: ThreadPoolExecutor | None,
        token: CancellationToken,
        started: float,
    ) -> Generator[ProgressEvent, None, list[tuple[CoveragePoint, ...]]]:
        """Re-evaluate promising cells on a 2x2 sub-grid, nearest the centre first.

        A refined cell takes the figures of its best sub-point but keeps its
        own coordinates. A terrain failure leaves that cell unrefined.
        """
        centre_row, centre_col = len(rows) // 2, len(rows[0]) // 2
        candidates = sorted(
            (
                (i, j)
                for i, row in enumerate(rows)
                for j, cell in enumerate(row)
                if cell.coverage_probability >= self.refinement_threshold
            ),
            key=lambda ij: math.hypot(ij[0] - centre_row, ij[1] - centre_col),
        )
        selected = candidates[: self.max_refinement_areas]
        if not selected:
            return rows

        refined_rows = [list(row) for row in rows]
        total = len(selected)
        for k, (i, j) in enumerate(selected, start=1):
            token.raise_if_cancelled()
            self._check_timeout(started)

            cell = refined_rows[i][j]
            targets = [
                GeoPoint(
                    latitude=_clamp(cell.latitude + dy * lat_offset, bounds.min_y, bounds.max_y),
                    longitude=_clamp(cell.longitude + dx * lon_offset, bounds.min_x, bounds.max_x),
                )
                for dy in (1, -1)
                for dx in (-1, 1)
            ]
            try:
                if executor is None:
                    sub_points = [evaluate(t) for t in targets]
                else:
                    sub_points = list(executor.map(evaluate, targets))
            except TerrainError as e:
                logger.warning(
                    "Refinement skipped at (%.5f, %.5f): %s", cell.latitude, cell.longitude, e
                )
            else:
                best = max(sub_points, key=lambda p: p.coverage_probability)
                refined_rows[i][j] = best.model_copy(
                    update={"latitude": cell.latitude, "longitude": cell.longitude}
                )
            yield ProgressEvent(
                fraction=_PROGRESS_REFINE_START + _PROGRESS_REFINE_SPAN * k / total,
                message=f"Refining coverage... ({k}/{total} areas)",
            )

        logger.debug("Refined %d of %d candidate cells", total, len(candidates))
        return [tuple(row) for row in refined_rows]

    def _check_timeout(self, started: float) -> None:
        if self.timeout_s is not None and self._clock() - started > self.timeout_s:
            raise CoverageAnalysisError("Coverage calculation timed out.")

    @staticmethod
    def _grid(
        bounds: BoundingBox,
        resolution: float,
        rows: list[tuple[CoveragePoint, ...]],
        params: CoverageAnalysisParams,
        complete: bool,
    ) -> CoverageGrid:
        return CoverageGrid(
            bounds=bounds,
            resolution_m=resolution,
            rows=tuple(rows),
            created_at=time.time(),
            zoom_level=params.zoom_level,
            complete=complete,
        )


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))
