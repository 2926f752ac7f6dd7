"""Coverage analysis orchestration.

``CoverageAnalysisService`` accepts analysis requests, answers from the cache
when it can, and otherwise runs the grid builder on a worker thread while
publishing states, partial grids and events to subscribers.

At most one analysis is in flight per service. Each run is represented by an
``_AnalysisJob``; results are published only while that job is still the
current one, so a cancelled or superseded run never reaches subscribers.
Public methods never raise: failures become ``Error`` states.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from pydantic import ValidationError

from application.coverage.cache import CoverageCache
from application.coverage.config import CoverageEngineSettings
from application.coverage.observable import Observable
from application.coverage.state import (
    Calculating,
    CoverageAnalysisState,
    Error,
    Idle,
    Progress,
    Success,
)
from domain.coverage.errors import AnalysisCancelledError, CoverageAnalysisError
from domain.coverage.evaluator import CoveragePointEvaluator
from domain.coverage.events import (
    CancellationToken,
    CompletedEvent,
    FailedEvent,
    GridEvent,
    PartialGridEvent,
    ProgressEvent,
)
from domain.coverage.grid_builder import CoverageGridBuilder
from domain.coverage.repositories import PeerLocationProvider
from domain.coverage.services import compute_statistics, find_nearest_point, generate_cache_key
from domain.coverage.value_objects import (
    DEFAULT_ANTENNA_HEIGHT_FT,
    CoverageAnalysisParams,
    CoverageGrid,
    CoverageStatistics,
)
from domain.terrain.repositories import ElevationSource
from domain.terrain.value_objects import BoundingBox, GeoPoint
from infrastructure.terrain.elevation_sources import CachingElevationSource

logger = logging.getLogger(__name__)

EventListener = Callable[[GridEvent], None]


class _AnalysisJob:
    """Handle for one in-flight analysis."""

    def __init__(
        self,
        job_id: int,
        params: CoverageAnalysisParams,
        cache_key: str,
        viewport_bounds: BoundingBox | None,
    ) -> None:
        self.job_id = job_id
        self.params = params
        self.cache_key = cache_key
        self.viewport_bounds = viewport_bounds
        self.token = CancellationToken()
        self.future: Future[None] | None = None


def _describe_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in error.errors()
    )


class CoverageAnalysisService:
    """Cached, cancellable, incrementally reported coverage analysis.

    Observables:
        state: current CoverageAnalysisState
        current_grid: last completed grid, or None
        partial_grid: grid of the in-flight analysis so far, or None
    """

    def __init__(
        self,
        builder: CoverageGridBuilder,
        cache: CoverageCache,
        settings: CoverageEngineSettings | None = None,
    ) -> None:
        self.builder = builder
        self.cache = cache
        self.settings = settings or CoverageEngineSettings()

        self.state: Observable[CoverageAnalysisState] = Observable(Idle())
        self.current_grid: Observable[CoverageGrid | None] = Observable(None)
        self.partial_grid: Observable[CoverageGrid | None] = Observable(None)

        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._job: _AnalysisJob | None = None
        self._active_runs = 0
        self._job_ids = itertools.count(1)
        self._event_listeners: list[EventListener] = []
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="coverage-analysis")

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    def start_analysis(
        self,
        center: GeoPoint | None,
        radius_m: float,
        zoom_level: int,
        include_peer_extension: bool = True,
        viewport_bounds: BoundingBox | None = None,
        resolution_m: float | None = None,
        detail_level: str = "medium",
        user_antenna_height_ft: float = DEFAULT_ANTENNA_HEIGHT_FT,
        receiving_antenna_height_ft: float = DEFAULT_ANTENNA_HEIGHT_FT,
    ) -> None:
        """Request an analysis around ``center``.

        Ignored while another analysis is in flight, even when the request
        itself is invalid. A cached result is published as ``Success``
        immediately.
        """
        if center is None:
            self.state.set(Error(message="Missing center point"))
            return
        with self._lock:
            if self._job is not None:
                logger.debug("Analysis request ignored: job %d in flight", self._job.job_id)
                return
            try:
                params = CoverageAnalysisParams(
                    center=center,
                    radius_m=radius_m,
                    resolution_m=resolution_m,
                    zoom_level=zoom_level,
                    detail_level=detail_level,
                    include_peer_extension=include_peer_extension,
                    user_antenna_height_ft=user_antenna_height_ft,
                    receiving_antenna_height_ft=receiving_antenna_height_ft,
                    max_peer_distance_m=self.settings.max_peer_distance_m,
                )
            except ValidationError as e:
                message = f"Invalid analysis parameters: {_describe_validation_error(e)}"
                logger.warning("%s", message)
                self.state.set(Error(message=message))
                return
            self.submit(params, viewport_bounds)

    def submit(
        self, params: CoverageAnalysisParams, viewport_bounds: BoundingBox | None = None
    ) -> None:
        with self._lock:
            if self._job is not None:
                logger.debug("Analysis request ignored: job %d in flight", self._job.job_id)
                return

            key = generate_cache_key(params)
            cached = self.cache.get(key)
            if cached is not None:
                logger.info("Coverage cache hit for %s", key)
                self.partial_grid.set(None)
                self.current_grid.set(cached)
                self.state.set(Success(grid=cached))
                return

            job = _AnalysisJob(next(self._job_ids), params, key, viewport_bounds)
            self._job = job
            self._active_runs += 1
            self.partial_grid.set(None)
            self.state.set(Calculating())
            logger.info("Coverage job %d started for %s", job.job_id, key)
            try:
                job.future = self._executor.submit(self._run, job)
                job.future.add_done_callback(lambda _: self._release(job))
            except RuntimeError as e:
                # Executor already shut down
                self._job = None
                self._active_runs -= 1
                self.state.set(Error(message=f"Analysis failed: {e}"))

    def clear_analysis(self) -> None:
        """Cancel any in-flight analysis, drop grids and return to Idle."""
        with self._lock:
            job = self._job
            self._job = None
            if job is not None:
                job.token.cancel()
                logger.info("Coverage job %d cancelled", job.job_id)
            self.partial_grid.set(None)
            self.current_grid.set(None)
            self.state.set(Idle())
            self._idle.notify_all()

    clear_coverage_analysis = clear_analysis

    def clear_cache(self) -> None:
        self.cache.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_coverage_at_location(self, location: GeoPoint | None) -> float:
        """Probability of the cell nearest ``location``; 0.0 when either is missing."""
        grid = self.current_grid.value
        if grid is None or location is None:
            return 0.0
        point = find_nearest_point(grid, location)
        return point.coverage_probability if point is not None else 0.0

    def get_coverage_statistics(self) -> CoverageStatistics | None:
        grid = self.current_grid.value
        if grid is None:
            return None
        return compute_statistics(grid)

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._job is not None

    # ------------------------------------------------------------------
    # Subscriptions and lifecycle
    # ------------------------------------------------------------------
    def subscribe_events(self, listener: EventListener) -> Callable[[], None]:
        """Receive each job's events in order; returns an unsubscribe function."""
        with self._lock:
            self._event_listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._event_listeners:
                    self._event_listeners.remove(listener)

        return unsubscribe

    def wait(self, timeout: float | None = None) -> bool:
        """Block until no analysis is in flight or running; False on timeout."""
        with self._idle:
            return self._idle.wait_for(
                lambda: self._job is None and self._active_runs == 0, timeout
            )

    def shutdown(self) -> None:
        self.clear_analysis()
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------
    def _run(self, job: _AnalysisJob) -> None:
        try:
            for event in self.builder.iter_build(job.params, job.viewport_bounds, job.token):
                if not self._publish(job, event):
                    break
        except AnalysisCancelledError:
            logger.debug("Coverage job %d stopped after cancellation", job.job_id)
        except CoverageAnalysisError as e:
            logger.warning("Coverage job %d failed: %s", job.job_id, e)
            self._fail(job, str(e))
        except Exception as e:
            logger.exception("Coverage job %d failed unexpectedly", job.job_id)
            self._fail(job, f"Analysis failed: {e}")

    def _release(self, job: _AnalysisJob) -> None:
        """Future done-callback; also fires for jobs cancelled before they started."""
        with self._lock:
            if self._job is job:
                self._job = None
            self._active_runs -= 1
            self._idle.notify_all()

    def _is_current(self, job: _AnalysisJob) -> bool:
        return self._job is job and not job.token.is_cancelled

    def _publish(self, job: _AnalysisJob, event: GridEvent) -> bool:
        """Publish one event of ``job``; False once the job is stale or finished."""
        with self._lock:
            if not self._is_current(job):
                return False
            if isinstance(event, ProgressEvent):
                self.state.set(Progress(fraction=event.fraction, message=event.message))
            elif isinstance(event, PartialGridEvent):
                self.partial_grid.set(event.grid)
            elif isinstance(event, CompletedEvent):
                # A viewport-clipped grid does not answer the full request,
                # and the cache key ignores the viewport
                if job.viewport_bounds is None:
                    self.cache.put(job.cache_key, event.grid)
                self._job = None
                self.partial_grid.set(None)
                self.current_grid.set(event.grid)
                self.state.set(Success(grid=event.grid))
                logger.info("Coverage job %d complete", job.job_id)
            self._emit(event)
            return not isinstance(event, CompletedEvent)

    def _fail(self, job: _AnalysisJob, message: str) -> None:
        with self._lock:
            if not self._is_current(job):
                return
            self._job = None
            self.partial_grid.set(None)
            self.state.set(Error(message=message))
            self._emit(FailedEvent(message=message))

    def _emit(self, event: GridEvent) -> None:
        for listener in list(self._event_listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Error notifying event listener %r", listener)


def create_coverage_service(
    elevation_source: ElevationSource,
    peer_provider: PeerLocationProvider | None = None,
    settings: CoverageEngineSettings | None = None,
) -> CoverageAnalysisService:
    """Wire evaluator, builder and cache from ``settings``."""
    settings = settings or CoverageEngineSettings()
    if settings.elevation_cache_size > 0:
        elevation_source = CachingElevationSource(
            elevation_source, max_entries=settings.elevation_cache_size
        )
    evaluator = CoveragePointEvaluator(
        elevation_source,
        radio_model=settings.radio_model(),
        min_contribution_probability=settings.min_contribution_probability,
    )
    builder = CoverageGridBuilder(
        evaluator,
        peer_provider,
        partial_every_rows=settings.partial_every_rows,
        max_workers=settings.max_workers,
        max_grid_dimension=settings.max_grid_dimension,
        peer_receivability_threshold=settings.peer_receivability_threshold,
        max_peer_hops=settings.max_peer_hops,
        timeout_s=settings.job_timeout_s,
        max_refinement_areas=settings.max_refinement_areas,
        refinement_threshold=settings.refinement_threshold,
        refinement_min_zoom=settings.refinement_min_zoom,
    )
    cache = CoverageCache(max_entries=settings.cache_max_entries, ttl_s=settings.cache_ttl_s)
    return CoverageAnalysisService(builder, cache, settings)
