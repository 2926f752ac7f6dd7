"""Coverage Bounded Context.

Responsible for predicting where a transmitter can be heard:
- Value Objects: CoverageAnalysisParams, CoveragePoint, CoverageGrid, FresnelZone
- Services: propagation (Fresnel/occlusion, link budget), peer network analysis,
  CoveragePointEvaluator, CoverageGridBuilder, cache keys and statistics
- Ports: PeerLocationProvider
"""
