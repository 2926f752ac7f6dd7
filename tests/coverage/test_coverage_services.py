"""Tests for coverage policies, services and value objects."""

from __future__ import annotations

import math

import pytest
from pydantic import ValidationError

from domain.coverage.value_objects import (
    CoverageAnalysisParams,
    CoverageGrid,
    CoveragePoint,
)
from domain.terrain.value_objects import BoundingBox, GeoPoint

CENTER = GeoPoint(latitude=47.0, longitude=-122.0)


def params(**overrides) -> CoverageAnalysisParams:
    values = dict(center=CENTER, radius_m=5000.0, zoom_level=14)
    values.update(overrides)
    return CoverageAnalysisParams(**values)


def grid_of(probabilities: list[list[float]], bounds: BoundingBox, resolution_m: float):
    """Grid whose cells carry the given probabilities (row-major)."""
    rows = []
    lat_step = (bounds.max_y - bounds.min_y) / len(probabilities)
    for i, row in enumerate(probabilities):
        lon_step = (bounds.max_x - bounds.min_x) / len(row)
        rows.append(
            tuple(
                CoveragePoint(
                    latitude=bounds.max_y - (i + 0.5) * lat_step,
                    longitude=bounds.min_x + (j + 0.5) * lon_step,
                    coverage_probability=p,
                )
                for j, p in enumerate(row)
            )
        )
    return CoverageGrid(
        bounds=bounds,
        resolution_m=resolution_m,
        rows=tuple(rows),
        created_at=0.0,
        zoom_level=14,
    )


# ===========================================================================
# Resolution Policy
# ===========================================================================
@pytest.mark.parametrize(
    "zoom, detail, expected",
    [
        (20, "high", 20.0),
        (22, "medium", 30.0),
        (18, "low", 150.0),
        (14, "medium", 300.0),
        (12, "high", 300.0),
        (8, "low", 3000.0),
        (5, "high", 1500.0),
        (5, "bogus", 2250.0),
        (5, None, 2250.0),
    ],
)
def test_calculate_resolution(zoom, detail, expected):
    from domain.coverage.services import calculate_resolution

    assert calculate_resolution(zoom, detail) == expected


def test_detail_level_is_case_insensitive():
    from domain.coverage.services import calculate_resolution

    assert calculate_resolution(14, " HIGH ") == calculate_resolution(14, "high")


# ===========================================================================
# Bounds and Dimensions
# ===========================================================================
def test_bounds_span_twice_the_radius():
    from domain.coverage.policies import extent_m
    from domain.coverage.services import calculate_bounds

    bounds = calculate_bounds(CENTER, 5000.0)
    height, width = extent_m(bounds.min_x, bounds.min_y, bounds.max_x, bounds.max_y)

    assert bounds.center.latitude == pytest.approx(CENTER.latitude)
    assert bounds.center.longitude == pytest.approx(CENTER.longitude)
    assert height == pytest.approx(10_000.0)
    assert width == pytest.approx(10_000.0)


def test_bounds_are_clamped_near_poles_and_antimeridian():
    from domain.coverage.services import calculate_bounds

    bounds = calculate_bounds(GeoPoint(latitude=89.99, longitude=179.99), 50_000.0)

    assert bounds.max_y == 90.0
    assert bounds.max_x == 180.0
    assert bounds.min_y < 89.99


def test_reference_grid_dimensions():
    from domain.coverage.services import calculate_bounds, grid_dimensions

    b = calculate_bounds(CENTER, 5000.0)

    assert grid_dimensions(b.min_x, b.min_y, b.max_x, b.max_y, 300.0) == (34, 34)
    assert grid_dimensions(b.min_x, b.min_y, b.max_x, b.max_y, 1000.0) == (10, 10)
    assert grid_dimensions(b.min_x, b.min_y, b.max_x, b.max_y, 50_000.0) == (1, 1)


# ===========================================================================
# Cache Keys
# ===========================================================================
def test_cache_key_format():
    from domain.coverage.services import generate_cache_key

    key = generate_cache_key(params())

    assert key == "47.00_-122.00_5000_14_true_medium_6_6"


def test_cache_key_is_deterministic_and_rounded():
    from domain.coverage.services import generate_cache_key

    a = params(center=GeoPoint(latitude=47.001, longitude=-122.004), radius_m=5200.0)
    b = params(center=GeoPoint(latitude=46.998, longitude=-121.996), radius_m=4900.0)

    assert generate_cache_key(a) == generate_cache_key(a)
    assert generate_cache_key(a) == generate_cache_key(b)


@pytest.mark.parametrize(
    "change",
    [
        {"zoom_level": 15},
        {"include_peer_extension": False},
        {"detail_level": "high"},
        {"user_antenna_height_ft": 10.0},
        {"receiving_antenna_height_ft": 12.5},
        {"radius_m": 7000.0},
        {"center": GeoPoint(latitude=47.02, longitude=-122.0)},
    ],
)
def test_cache_key_changes_with_inputs(change):
    from domain.coverage.services import generate_cache_key

    assert generate_cache_key(params(**change)) != generate_cache_key(params())


@pytest.mark.parametrize(
    "radius_m, expected",
    [(2500.0, "3000"), (3500.0, "4000"), (4499.0, "4000"), (500.0, "1000")],
)
def test_cache_key_radius_halves_round_up(radius_m, expected):
    from domain.coverage.services import generate_cache_key

    key = generate_cache_key(params(radius_m=radius_m))

    assert key.split("_")[2] == expected


def test_cache_key_folds_negative_zero():
    from domain.coverage.services import generate_cache_key

    key = generate_cache_key(params(center=GeoPoint(latitude=-0.001, longitude=0.001)))

    assert key.startswith("0.00_0.00_")


# ===========================================================================
# Statistics and Queries
# ===========================================================================
@pytest.fixture
def two_by_two():
    from domain.coverage.services import calculate_bounds

    bounds = calculate_bounds(GeoPoint(latitude=0.0, longitude=0.0), 100.0)
    return grid_of([[0.9, 0.6], [0.3, 0.0]], bounds, 100.0)


def test_compute_statistics(two_by_two):
    from domain.coverage.services import compute_statistics

    stats = compute_statistics(two_by_two)

    assert stats.total_points == 4
    assert stats.covered_points == 2
    assert stats.good_coverage_points == 1
    assert stats.coverage_percentage == pytest.approx(50.0)
    assert stats.average_coverage == pytest.approx(0.45)
    assert stats.min_coverage == 0.0
    assert stats.max_coverage == 0.9


def test_statistics_of_partial_empty_grid():
    from domain.coverage.services import calculate_bounds, compute_statistics

    bounds = calculate_bounds(GeoPoint(latitude=0.0, longitude=0.0), 100.0)
    grid = CoverageGrid(
        bounds=bounds, resolution_m=100.0, rows=(), created_at=0.0, zoom_level=14, complete=False
    )

    stats = compute_statistics(grid)

    assert stats.total_points == 0
    assert stats.coverage_percentage == 0.0


def test_find_nearest_point(two_by_two):
    from domain.coverage.services import find_nearest_point

    north_east = GeoPoint(latitude=0.0009, longitude=0.0009)
    south_west = GeoPoint(latitude=-0.0004, longitude=-0.0004)

    assert find_nearest_point(two_by_two, north_east).coverage_probability == 0.6
    assert find_nearest_point(two_by_two, south_west).coverage_probability == 0.3


def test_nearest_point_at_cell_coordinates_is_that_cell(two_by_two):
    from domain.coverage.services import find_nearest_point

    for cell in two_by_two.points():
        assert find_nearest_point(two_by_two, cell.location) == cell


# ===========================================================================
# Value Object Invariants
# ===========================================================================
class TestCoveragePoint:
    @pytest.mark.parametrize("raw, clamped", [(-0.5, 0.0), (1.7, 1.0), (math.nan, 0.0), (0.4, 0.4)])
    def test_probability_is_clamped(self, raw, clamped):
        point = CoveragePoint(latitude=0.0, longitude=0.0, coverage_probability=raw)

        assert point.coverage_probability == clamped

    def test_blockage_and_occlusion_are_clamped(self):
        point = CoveragePoint(
            latitude=0.0,
            longitude=0.0,
            coverage_probability=0.5,
            fresnel_zone_blockage=2.0,
            terrain_occlusion=-1.0,
        )

        assert point.fresnel_zone_blockage == 1.0
        assert point.terrain_occlusion == 0.0

    def test_rejects_invalid_latitude(self):
        with pytest.raises(ValidationError):
            CoveragePoint(latitude=91.0, longitude=0.0, coverage_probability=0.5)


class TestCoverageGrid:
    def test_complete_grid_requires_all_rows(self, two_by_two):
        with pytest.raises(ValidationError, match="Complete grid needs 2 rows"):
            CoverageGrid(
                bounds=two_by_two.bounds,
                resolution_m=100.0,
                rows=two_by_two.rows[:1],
                created_at=0.0,
                zoom_level=14,
            )

    def test_partial_grid_accepts_prefix(self, two_by_two):
        partial = CoverageGrid(
            bounds=two_by_two.bounds,
            resolution_m=100.0,
            rows=two_by_two.rows[:1],
            created_at=0.0,
            zoom_level=14,
            complete=False,
        )

        assert partial.cell_count == 2
        assert partial.shape == (2, 2)

    def test_rejects_ragged_rows(self, two_by_two):
        with pytest.raises(ValidationError, match="Row 1 has 1 cells, expected 2"):
            CoverageGrid(
                bounds=two_by_two.bounds,
                resolution_m=100.0,
                rows=(two_by_two.rows[0], two_by_two.rows[1][:1]),
                created_at=0.0,
                zoom_level=14,
            )

    def test_is_immutable(self, two_by_two):
        with pytest.raises(ValidationError):
            two_by_two.zoom_level = 3


class TestCoverageAnalysisParams:
    def test_unknown_detail_level_becomes_medium(self):
        assert params(detail_level="ultra").detail_level == "medium"
        assert params(detail_level="LOW").detail_level == "low"

    def test_explicit_resolution_overrides_policy(self):
        assert params(resolution_m=75.0).effective_resolution_m == 75.0
        assert params().effective_resolution_m == 300.0

    def test_antenna_heights_convert_to_meters(self):
        p = params(user_antenna_height_ft=10.0, receiving_antenna_height_ft=0.0)

        assert p.user_antenna_height_m == pytest.approx(3.048)
        assert p.receiving_antenna_height_m == 0.0

    @pytest.mark.parametrize(
        "change",
        [{"radius_m": 0.0}, {"radius_m": -5.0}, {"zoom_level": 25}, {"user_antenna_height_ft": -1.0}],
    )
    def test_rejects_invalid_values(self, change):
        with pytest.raises(ValidationError):
            params(**change)
