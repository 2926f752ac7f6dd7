"""Coverage analysis application services.

Main entry points exported for simplified imports.
"""

from .cache import CacheLookup, CacheStatus, CoverageCache
from .config import CoverageEngineSettings
from .orchestrator import CoverageAnalysisService, create_coverage_service

__all__ = [
    "CacheLookup",
    "CacheStatus",
    "CoverageAnalysisService",
    "CoverageCache",
    "CoverageEngineSettings",
    "create_coverage_service",
]
