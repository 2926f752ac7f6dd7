"""Coverage Engine Domain Layer.

This package contains the core business logic organized by bounded contexts:
- terrain: Physical geography, elevation lookups, terrain profiles
- coverage: RF propagation, Fresnel blockage, coverage grids, peer relays
"""

from domain import coverage, terrain

__all__ = ["coverage", "terrain"]
