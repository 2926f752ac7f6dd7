"""Coverage Bounded Context - Error Hierarchy."""

from __future__ import annotations


class CoverageError(Exception):
    """Base error for coverage operations."""


class CoverageAnalysisError(CoverageError):
    """Coverage computation failed; the message is user-presentable."""


class AnalysisCancelledError(CoverageError):
    """A running analysis observed its cancellation token.

    Cooperative cancellation, not a failure: never surfaced as an error state.
    """
