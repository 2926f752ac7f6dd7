"""Terrain Bounded Context.

Responsible for physical geography and spatial calculations:
- Value Objects: GeoPoint, BoundingBox, TerrainGrid, TerrainPoint, TerrainProfile
- Services: geodesic distance and paths, bilinear sampling, sample_terrain_profile
- Ports: TerrainRepository, ElevationSource
"""
