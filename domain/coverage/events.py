"""Coverage Bounded Context - Grid build events and cancellation.

A grid build reports through a typed event stream instead of callbacks:
progress fractions, growing partial grids and one terminal event.
"""

from __future__ import annotations

import threading

from pydantic import BaseModel, ConfigDict, Field

from domain.coverage.errors import AnalysisCancelledError
from domain.coverage.value_objects import CoverageGrid


class ProgressEvent(BaseModel):
    fraction: float = Field(ge=0, le=1)
    message: str

    model_config = ConfigDict(frozen=True)


class PartialGridEvent(BaseModel):
    grid: CoverageGrid

    model_config = ConfigDict(frozen=True)


class CompletedEvent(BaseModel):
    grid: CoverageGrid

    model_config = ConfigDict(frozen=True)


class FailedEvent(BaseModel):
    message: str

    model_config = ConfigDict(frozen=True)


GridEvent = ProgressEvent | PartialGridEvent | CompletedEvent | FailedEvent


class CancellationToken:
    """Cooperative cancellation flag shared between a job and its owner."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise AnalysisCancelledError once cancel() has been called."""
        if self._event.is_set():
            raise AnalysisCancelledError("Coverage analysis cancelled")
