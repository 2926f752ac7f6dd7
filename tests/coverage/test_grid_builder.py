"""Tests for CoverageGridBuilder: geometry, events, cancellation and failures."""

from __future__ import annotations

import itertools

import pytest

from conftest import FailingElevationSource, FlatElevationSource
from domain.coverage.value_objects import CoverageAnalysisParams
from domain.terrain.value_objects import BoundingBox, GeoPoint

CENTER = GeoPoint(latitude=47.0, longitude=-122.0)


def small_params(**overrides) -> CoverageAnalysisParams:
    """1 km radius at 200 m resolution: a 10 x 10 grid."""
    values = dict(
        center=CENTER,
        radius_m=1000.0,
        resolution_m=200.0,
        zoom_level=14,
        include_peer_extension=False,
    )
    values.update(overrides)
    return CoverageAnalysisParams(**values)


def make_builder(source=None, peer_provider=None, **kwargs):
    from domain.coverage.evaluator import CoveragePointEvaluator
    from domain.coverage.grid_builder import CoverageGridBuilder

    evaluator = CoveragePointEvaluator(source or FlatElevationSource())
    return CoverageGridBuilder(evaluator, peer_provider, **kwargs)


# ===========================================================================
# Grid Geometry
# ===========================================================================
def test_reference_request_produces_34_by_34_grid():
    """47N/122W, 5 km radius, zoom 14, medium detail -> 300 m cells, 34 x 34."""
    params = CoverageAnalysisParams(
        center=CENTER,
        radius_m=5000.0,
        zoom_level=14,
        detail_level="medium",
        include_peer_extension=False,
    )

    grid = make_builder().build(params)

    assert params.effective_resolution_m == 300.0
    assert grid.resolution_m == 300.0
    assert grid.shape == (34, 34)
    assert len(grid.rows) == 34
    assert all(len(row) == 34 for row in grid.rows)
    assert grid.complete is True
    assert grid.zoom_level == 14


def test_rows_run_north_to_south():
    grid = make_builder().build(small_params())

    latitudes = [row[0].latitude for row in grid.rows]
    longitudes = [cell.longitude for cell in grid.rows[0]]
    assert latitudes == sorted(latitudes, reverse=True)
    assert longitudes == sorted(longitudes)
    assert all(grid.bounds.contains(cell.location) for cell in grid.points())


def test_all_cells_have_unit_interval_values():
    grid = make_builder().build(small_params())

    for cell in grid.points():
        assert 0.0 <= cell.coverage_probability <= 1.0
        assert 0.0 <= cell.fresnel_zone_blockage <= 1.0
        assert 0.0 <= cell.terrain_occlusion <= 1.0


def test_oversized_grid_is_capped():
    """A too-fine resolution is coarsened to fit the dimension cap."""
    builder = make_builder(max_grid_dimension=10)

    grid = builder.build(small_params(resolution_m=20.0))

    assert grid.shape == (10, 10)
    assert grid.resolution_m == pytest.approx(200.0, rel=1e-6)


def test_viewport_restricts_area():
    builder = make_builder()
    params = small_params()
    full = builder.analysis_bounds(params)
    east_half = BoundingBox(
        min_x=CENTER.longitude,
        min_y=full.min_y - 1.0,
        max_x=full.max_x + 1.0,
        max_y=full.max_y + 1.0,
    )

    grid = builder.build(params, viewport_bounds=east_half)

    assert grid.bounds.min_x == CENTER.longitude
    assert grid.bounds.max_x == full.max_x
    assert grid.shape == (10, 5)


def test_viewport_outside_area_fails():
    from domain.coverage.errors import CoverageAnalysisError

    elsewhere = BoundingBox(min_x=10.0, min_y=10.0, max_x=11.0, max_y=11.0)

    with pytest.raises(CoverageAnalysisError, match="Viewport"):
        make_builder().build(small_params(), viewport_bounds=elsewhere)


# ===========================================================================
# Events
# ===========================================================================
def test_progress_is_monotonic_and_bracketed():
    from domain.coverage.events import CompletedEvent, ProgressEvent

    events = list(make_builder().iter_build(small_params()))
    progress = [e for e in events if isinstance(e, ProgressEvent)]

    fractions = [e.fraction for e in progress]
    assert fractions[0] == 0.0
    assert fractions[-1] == 1.0
    assert fractions == sorted(fractions)
    assert progress[0].message == "Initializing coverage analysis..."
    assert progress[1].message == "Analyzing peer network..."
    assert progress[2].message == "Calculating coverage... (10/100 points)"
    assert progress[-1].message == "Coverage analysis complete"
    assert isinstance(events[-1], CompletedEvent)


def test_partial_grids_grow_by_rows():
    from domain.coverage.events import CompletedEvent, PartialGridEvent

    events = list(make_builder(partial_every_rows=3).iter_build(small_params()))
    partials = [e.grid for e in events if isinstance(e, PartialGridEvent)]
    final = next(e.grid for e in events if isinstance(e, CompletedEvent))

    assert [len(p.rows) for p in partials] == [3, 6, 9]
    for earlier, later in itertools.pairwise(partials + [final]):
        assert later.rows[: len(earlier.rows)] == earlier.rows
    assert all(p.complete is False for p in partials)
    assert all(p.shape == final.shape for p in partials)


def test_build_forwards_callbacks():
    progress = []
    partials = []

    grid = make_builder(partial_every_rows=5).build(
        small_params(),
        on_progress=lambda fraction, message: progress.append(fraction),
        on_partial=partials.append,
    )

    assert progress[-1] == 1.0
    assert len(partials) == 1
    assert grid.complete


# ===========================================================================
# Concurrency
# ===========================================================================
def test_threaded_rows_match_sequential():
    params = small_params()

    sequential = make_builder(max_workers=1).build(params)
    threaded = make_builder(max_workers=4).build(params)

    assert [c.coverage_probability for c in threaded.points()] == [
        c.coverage_probability for c in sequential.points()
    ]


def test_cancelled_token_stops_build():
    from domain.coverage.errors import AnalysisCancelledError
    from domain.coverage.events import CancellationToken, CompletedEvent, ProgressEvent

    token = CancellationToken()
    events = []
    build = make_builder().iter_build(small_params(), cancel_token=token)

    with pytest.raises(AnalysisCancelledError):
        for event in build:
            events.append(event)
            if isinstance(event, ProgressEvent) and event.fraction > 0.1:
                token.cancel()

    rows_done = [e for e in events if isinstance(e, ProgressEvent) and e.fraction > 0.1]
    assert len(rows_done) == 1
    assert not any(isinstance(e, CompletedEvent) for e in events)


def test_timeout_between_rows():
    from domain.coverage.errors import CoverageAnalysisError

    ticks = itertools.count(0, 10)
    builder = make_builder(timeout_s=5.0, clock=lambda: next(ticks))

    with pytest.raises(CoverageAnalysisError, match="Coverage calculation timed out."):
        builder.build(small_params())


# ===========================================================================
# Failures and Peers
# ===========================================================================
def test_terrain_failure_is_wrapped():
    from domain.coverage.errors import CoverageAnalysisError
    from domain.terrain.errors import TerrainError

    with pytest.raises(CoverageAnalysisError, match="^Failed to calculate coverage: ") as exc_info:
        make_builder(FailingElevationSource()).build(small_params())

    assert isinstance(exc_info.value.__cause__, TerrainError)


def test_peer_extension_adds_contributors():
    from infrastructure.peers.static_provider import StaticPeerLocationProvider

    provider = StaticPeerLocationProvider(
        {"relay-1": GeoPoint(latitude=47.0, longitude=-121.99)}
    )
    builder = make_builder(peer_provider=provider)

    with_peers = builder.build(small_params(include_peer_extension=True))
    without_peers = builder.build(small_params(include_peer_extension=False))

    assert any("relay-1" in c.contributing_transmitters for c in with_peers.points())
    assert all(c.contributing_transmitters == ("user",) for c in without_peers.points())


def test_candidate_transmitters_use_antenna_heights():
    from infrastructure.peers.static_provider import StaticPeerLocationProvider

    provider = StaticPeerLocationProvider(
        {
            "relay-1": GeoPoint(latitude=47.0, longitude=-121.99),
            "user": GeoPoint(latitude=0.0, longitude=0.0),
        }
    )
    params = small_params(
        include_peer_extension=True,
        user_antenna_height_ft=10.0,
        receiving_antenna_height_ft=20.0,
    )

    transmitters = make_builder(peer_provider=provider).candidate_transmitters(params)

    assert [t.id for t in transmitters] == ["user", "relay-1"]
    assert transmitters[0].antenna_height_m == pytest.approx(3.048)
    assert transmitters[1].antenna_height_m == pytest.approx(6.096)


# ===========================================================================
# Progressive Refinement
# ===========================================================================
def recording_builder(**kwargs):
    """Builder whose evaluator logs every (target, result) pair it produces."""
    from domain.coverage.evaluator import CoveragePointEvaluator
    from domain.coverage.grid_builder import CoverageGridBuilder

    class RecordingEvaluator(CoveragePointEvaluator):
        def __init__(self, *args, **kw):
            super().__init__(*args, **kw)
            self.calls = []

        def evaluate(self, target, transmitters, rx_antenna_height_m, max_range_m):
            result = super().evaluate(target, transmitters, rx_antenna_height_m, max_range_m)
            self.calls.append((target, result))
            return result

    evaluator = RecordingEvaluator(FlatElevationSource(), kwargs.pop("radio_model", None))
    return CoverageGridBuilder(evaluator, **kwargs), evaluator


def refine_messages(events):
    from domain.coverage.events import ProgressEvent

    return [
        e for e in events if isinstance(e, ProgressEvent) and e.message.startswith("Refining")
    ]


def test_refinement_is_off_by_default():
    events = list(make_builder().iter_build(small_params()))

    assert refine_messages(events) == []


def test_refinement_reevaluates_cells_nearest_centre():
    builder, evaluator = recording_builder(max_refinement_areas=3)
    plain = make_builder().build(small_params())

    refined = builder.build(small_params())

    assert len(evaluator.calls) == 100 + 3 * 4
    sub_points = evaluator.calls[100:]
    # Centre cell first, then its row-major nearest neighbours
    expected = [(5, 5), (4, 5), (5, 4)]
    for k, (i, j) in enumerate(expected):
        group = sub_points[4 * k : 4 * k + 4]
        cell = refined.rows[i][j]
        assert sum(t.latitude for t, _ in group) / 4 == pytest.approx(cell.latitude)
        assert sum(t.longitude for t, _ in group) / 4 == pytest.approx(cell.longitude)
        best = max(r.coverage_probability for _, r in group)
        assert cell.coverage_probability == best

    for i, j in itertools.product(range(10), range(10)):
        before, after = plain.rows[i][j], refined.rows[i][j]
        assert (after.latitude, after.longitude) == (before.latitude, before.longitude)
        if (i, j) not in expected:
            assert after == before


def test_refinement_progress_fills_last_band():
    from domain.coverage.events import CompletedEvent, ProgressEvent

    builder, _ = recording_builder(max_refinement_areas=2)

    events = list(builder.iter_build(small_params()))
    refining = refine_messages(events)
    fractions = [e.fraction for e in events if isinstance(e, ProgressEvent)]

    assert [e.message for e in refining] == [
        "Refining coverage... (1/2 areas)",
        "Refining coverage... (2/2 areas)",
    ]
    assert all(0.95 < e.fraction < 1.0 for e in refining)
    assert fractions == sorted(fractions)
    assert fractions[-1] == 1.0
    assert isinstance(events[-1], CompletedEvent)


def test_refinement_skipped_below_min_zoom():
    builder, evaluator = recording_builder(max_refinement_areas=3)

    events = list(builder.iter_build(small_params(zoom_level=13)))

    assert refine_messages(events) == []
    assert len(evaluator.calls) == 100


def test_refinement_skips_weak_cells():
    from domain.coverage.propagation import RadioModel

    builder, evaluator = recording_builder(
        max_refinement_areas=3, radio_model=RadioModel(tx_power_dbm=-100.0)
    )

    events = list(builder.iter_build(small_params()))

    assert refine_messages(events) == []
    assert len(evaluator.calls) == 100


def test_cancel_during_refinement():
    from domain.coverage.errors import AnalysisCancelledError
    from domain.coverage.events import CancellationToken, CompletedEvent

    builder, _ = recording_builder(max_refinement_areas=5)
    token = CancellationToken()
    events = []

    with pytest.raises(AnalysisCancelledError):
        for event in builder.iter_build(small_params(), cancel_token=token):
            events.append(event)
            if refine_messages([event]):
                token.cancel()

    assert len(refine_messages(events)) == 1
    assert not any(isinstance(e, CompletedEvent) for e in events)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"partial_every_rows": 0},
        {"max_workers": 0},
        {"max_grid_dimension": 0},
        {"max_refinement_areas": -1},
    ],
)
def test_rejects_invalid_configuration(kwargs):
    with pytest.raises(ValueError):
        make_builder(**kwargs)
