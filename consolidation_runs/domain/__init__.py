"""
consolidation_runs.domain -- Pure types for the run lifecycle.

ZERO I/O. All types are frozen dataclasses.
"""

from consolidation_runs.domain.types import (
    ConsolidationRun,
    PeriodRef,
    RunOptions,
    RunStatus,
    RunStep,
    StepStatus,
    StepType,
    initial_steps,
)

__all__ = [
    "ConsolidationRun",
    "PeriodRef",
    "RunOptions",
    "RunStatus",
    "RunStep",
    "StepStatus",
    "StepType",
    "initial_steps",
]
