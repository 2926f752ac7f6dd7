"""Observable analysis states.

Idle -> Calculating -> Progress* -> Success | Error; a new request from a
terminal state re-enters Calculating, or jumps to Success on a cache hit.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from domain.coverage.value_objects import CoverageGrid


class CoverageAnalysisState(BaseModel):
    model_config = ConfigDict(frozen=True)


class Idle(CoverageAnalysisState):
    pass


class Calculating(CoverageAnalysisState):
    pass


class Progress(CoverageAnalysisState):
    fraction: float = Field(ge=0, le=1)
    message: str


class Success(CoverageAnalysisState):
    grid: CoverageGrid


class Error(CoverageAnalysisState):
    message: str
