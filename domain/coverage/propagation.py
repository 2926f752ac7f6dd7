"""Coverage Bounded Context - Fresnel zone and terrain occlusion calculator.

Pure functions over a terrain profile and radio parameters. The straight
line between antenna tops is compared with terrain raised by the earth bulge
(effective earth radius ``k * R``); clearance below 60 % of the first Fresnel
radius counts as partial blockage.

Signal strength uses free-space path loss plus a stepped blockage loss, and is
mapped to a probability with a logistic curve around the receiver
sensitivity.
"""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field

from domain.coverage.value_objects import DEFAULT_FREQUENCY_HZ, FresnelZone
from domain.terrain.value_objects import TerrainProfile

SPEED_OF_LIGHT_M_S = 299_792_458.0
EARTH_RADIUS_M = 6_371_000.0
DEFAULT_K_FACTOR = 4.0 / 3.0
FRESNEL_CLEARANCE_RATIO = 0.6

DEFAULT_TX_POWER_DBM = 14.0
DEFAULT_RX_SENSITIVITY_DBM = -130.0
PROBABILITY_SLOPE = 0.3  # logistic steepness per dB of margin
PROBABILITY_MIDPOINT_DB = 10.0  # margin at which probability is 0.5

OCCLUSION_PENALTY = 0.9
BLOCKAGE_PENALTY = 0.3

# (upper blockage bound, loss in dB); beyond the last bound the loss is 18 dB
_BLOCKAGE_LOSS_STEPS: tuple[tuple[float, float], ...] = (
    (0.05, 0.0),
    (0.15, 2.0),
    (0.25, 4.0),
    (0.35, 6.0),
    (0.45, 8.0),
    (0.55, 10.0),
    (0.65, 12.0),
    (0.75, 14.0),
)
_MAX_BLOCKAGE_LOSS_DB = 18.0


class PathAnalysis(BaseModel):
    """Outcome of analyzing one transmitter/receiver path."""

    fresnel_blockage: float = Field(ge=0, le=1)
    terrain_occlusion: float = Field(ge=0, le=1)
    line_of_sight_blocked: bool
    min_clearance_m: float  # inf when no interior terrain was evaluated
    fresnel_zone: FresnelZone

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------
def wavelength_m(frequency_hz: float) -> float:
    return SPEED_OF_LIGHT_M_S / frequency_hz


def fresnel_radius_m(d1: float, d2: float, wavelength: float, zone: int = 1) -> float:
    """Radius of the n-th Fresnel zone at distances d1/d2 from the endpoints."""
    total = d1 + d2
    if d1 <= 0 or d2 <= 0 or total <= 0:
        return 0.0
    return math.sqrt(zone * wavelength * d1 * d2 / total)


def earth_bulge_m(d1: float, d2: float, k_factor: float = DEFAULT_K_FACTOR) -> float:
    """Height of the earth's curvature above the chord at d1/d2."""
    if d1 <= 0 or d2 <= 0:
        return 0.0
    return d1 * d2 / (2.0 * k_factor * EARTH_RADIUS_M)


def point_blockage(clearance_m: float, required_clearance_m: float) -> float:
    """Fraction of the required Fresnel clearance that terrain intrudes into."""
    if required_clearance_m <= 0:
        return 1.0 if clearance_m < 0 else 0.0
    if clearance_m >= required_clearance_m:
        return 0.0
    if clearance_m <= -required_clearance_m:
        return 1.0
    return (required_clearance_m - clearance_m) / (2.0 * required_clearance_m)


def analyze_path(
    profile: TerrainProfile,
    tx_height_m: float,
    rx_height_m: float,
    frequency_hz: float = DEFAULT_FREQUENCY_HZ,
    k_factor: float = DEFAULT_K_FACTOR,
) -> PathAnalysis:
    """Compute Fresnel blockage and terrain occlusion along a profile.

    Endpoint ground elevation falls back to 0 m when unknown. NoData interior
    points are skipped. The aggregate blockage is the worst per-point value;
    occlusion is the deepest intrusion below the line of sight relative to
    the first Fresnel radius at that point.
    """
    points = profile.points
    total = profile.total_distance_m
    wl = wavelength_m(frequency_hz)

    radii = tuple(
        fresnel_radius_m(p.distance_m, total - p.distance_m, wl) for p in points
    )

    blockage = 0.0
    occlusion = 0.0
    min_clearance = math.inf

    if total > 0 and len(points) > 2:
        tx_ground = 0.0 if points[0].is_nodata else points[0].elevation_m
        rx_ground = 0.0 if points[-1].is_nodata else points[-1].elevation_m
        tx_top = tx_ground + tx_height_m
        rx_top = rx_ground + rx_height_m

        for p, radius in zip(points[1:-1], radii[1:-1]):
            if p.is_nodata:
                continue
            d1 = p.distance_m
            d2 = total - d1
            los_height = tx_top + (rx_top - tx_top) * d1 / total
            terrain = p.elevation_m + earth_bulge_m(d1, d2, k_factor)
            clearance = los_height - terrain

            blockage = max(blockage, point_blockage(clearance, FRESNEL_CLEARANCE_RATIO * radius))

            if clearance < min_clearance:
                min_clearance = clearance
                if clearance < 0:
                    occlusion = 1.0 if radius <= 0 else min(1.0, -clearance / radius)

    zone = FresnelZone(
        points=tuple(p.point for p in points),
        radii_m=radii,
        blockage=blockage,
        profile=profile,
        frequency_hz=frequency_hz,
    )
    return PathAnalysis(
        fresnel_blockage=blockage,
        terrain_occlusion=occlusion,
        line_of_sight_blocked=min_clearance < 0,
        min_clearance_m=min_clearance,
        fresnel_zone=zone,
    )


# ---------------------------------------------------------------------------
# Link budget
# ---------------------------------------------------------------------------
def free_space_path_loss_db(distance_m: float, frequency_hz: float = DEFAULT_FREQUENCY_HZ) -> float:
    d = max(distance_m, 1.0)
    return 20.0 * math.log10(d) + 20.0 * math.log10(frequency_hz) - 147.55


def blockage_loss_db(blockage: float) -> float:
    for upper, loss in _BLOCKAGE_LOSS_STEPS:
        if blockage < upper:
            return loss
    return _MAX_BLOCKAGE_LOSS_DB


def signal_strength_dbm(
    distance_m: float,
    blockage: float = 0.0,
    tx_power_dbm: float = DEFAULT_TX_POWER_DBM,
    frequency_hz: float = DEFAULT_FREQUENCY_HZ,
) -> float:
    return tx_power_dbm - free_space_path_loss_db(distance_m, frequency_hz) - blockage_loss_db(blockage)


def coverage_probability(
    signal_dbm: float, sensitivity_dbm: float = DEFAULT_RX_SENSITIVITY_DBM
) -> float:
    margin = signal_dbm - sensitivity_dbm
    exponent = -PROBABILITY_SLOPE * (margin - PROBABILITY_MIDPOINT_DB)
    # exp overflows past ~709
    if exponent > 700:
        return 0.0
    return min(1.0, max(0.0, 1.0 / (1.0 + math.exp(exponent))))


def shadowed_probability(base: float, blockage: float, occlusion: float) -> float:
    """Reduce a line-of-sight probability for terrain shadow and Fresnel blockage."""
    p = base * (1.0 - OCCLUSION_PENALTY * occlusion) * (1.0 - BLOCKAGE_PENALTY * blockage)
    return min(1.0, max(0.0, p))


class RadioModel(BaseModel):
    """Radio parameters shared by every link evaluated in one analysis."""

    frequency_hz: float = Field(default=DEFAULT_FREQUENCY_HZ, gt=0)
    tx_power_dbm: float = DEFAULT_TX_POWER_DBM
    receiver_sensitivity_dbm: float = DEFAULT_RX_SENSITIVITY_DBM
    k_factor: float = Field(default=DEFAULT_K_FACTOR, gt=0)

    model_config = ConfigDict(frozen=True)

    def signal_strength_dbm(self, distance_m: float, blockage: float = 0.0) -> float:
        return signal_strength_dbm(distance_m, blockage, self.tx_power_dbm, self.frequency_hz)

    def link_probability(
        self, distance_m: float, blockage: float = 0.0, occlusion: float = 0.0
    ) -> float:
        signal = self.signal_strength_dbm(distance_m, blockage)
        base = coverage_probability(signal, self.receiver_sensitivity_dbm)
        return shadowed_probability(base, blockage, occlusion)

    def analyze(self, profile: TerrainProfile, tx_height_m: float, rx_height_m: float) -> PathAnalysis:
        return analyze_path(profile, tx_height_m, rx_height_m, self.frequency_hz, self.k_factor)
