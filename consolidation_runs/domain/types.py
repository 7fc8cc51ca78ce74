"""
consolidation_runs.domain.types -- Pure frozen dataclasses for the run lifecycle.

ZERO I/O. Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - A run's status only moves along Pending -> InProgress -> terminal, or
      Pending -> Cancelled (RunStatus.can_transition_to).
    - Terminal runs (Completed, Failed, Cancelled) are never mutated.
    - A run carries one RunStep per StepType, in StepType order; steps after
      the one that failed or was cancelled stay Pending.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from consolidation_engines.aggregation import ConsolidatedResult


class RunStatus(str, Enum):
    """Run lifecycle status."""

    PENDING = "pending"  # Accepted, waiting for a worker
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)

    def can_transition_to(self, target: RunStatus) -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.IN_PROGRESS, RunStatus.CANCELLED, RunStatus.FAILED}),
    RunStatus.IN_PROGRESS: frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
    RunStatus.CANCELLED: frozenset(),
}


class StepType(str, Enum):
    """Pipeline steps of a run, in execution order."""

    VALIDATE = "validate"  # eligible members and translation rates
    CONSOLIDATE_MEMBERS = "consolidate_members"  # fetch, translate, apply method, NCI
    ELIMINATE = "eliminate"
    AGGREGATE = "aggregate"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"  # nothing to process, e.g. no automatic elimination rules
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RunStep:
    """Progress of one pipeline step."""

    step_type: StepType
    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_message: str | None = None
    details: str | None = None

    def start(self, at: datetime) -> RunStep:
        return replace(self, status=StepStatus.IN_PROGRESS, started_at=at)

    def finish(
        self,
        status: StepStatus,
        at: datetime,
        duration_ms: int | None,
        error_message: str | None = None,
        details: str | None = None,
    ) -> RunStep:
        return replace(
            self,
            status=status,
            completed_at=at,
            duration_ms=duration_ms,
            error_message=error_message,
            details=details,
        )

    def to_dict(self) -> dict:
        return {
            "step_type": self.step_type.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RunStep:
        started = data.get("started_at")
        completed = data.get("completed_at")
        return cls(
            step_type=StepType(data["step_type"]),
            status=StepStatus(data["status"]),
            started_at=datetime.fromisoformat(started) if started else None,
            completed_at=datetime.fromisoformat(completed) if completed else None,
            duration_ms=data.get("duration_ms"),
            error_message=data.get("error_message"),
            details=data.get("details"),
        )


def initial_steps() -> tuple[RunStep, ...]:
    return tuple(RunStep(step_type) for step_type in StepType)


@dataclass(frozen=True, order=True)
class PeriodRef:
    """Fiscal period a run consolidates, e.g. PeriodRef(2024, 12)."""

    fiscal_year: int
    period_number: int

    def __post_init__(self) -> None:
        if self.period_number < 1:
            raise ValueError(f"period_number must be >= 1, got {self.period_number}")

    @property
    def key(self) -> str:
        return f"{self.fiscal_year}-{self.period_number:02d}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class RunOptions:
    """
    Per-run switches.

    skip_validation demotes validation errors to warnings and excludes the
    members they concern. continue_on_warnings=False makes any warning
    fatal. force_regeneration replaces an existing Completed run for the
    same group and period.
    """

    skip_validation: bool = False
    continue_on_warnings: bool = True
    include_equity_method_investments: bool = True
    force_regeneration: bool = False

    def to_dict(self) -> dict:
        return {
            "skip_validation": self.skip_validation,
            "continue_on_warnings": self.continue_on_warnings,
            "include_equity_method_investments": self.include_equity_method_investments,
            "force_regeneration": self.force_regeneration,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> RunOptions:
        data = data or {}
        return cls(**{k: bool(v) for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class ConsolidationRun:
    """Immutable snapshot of a run, with its result once Completed."""

    run_id: UUID
    organization_id: UUID
    group_id: UUID
    period: PeriodRef
    as_of_date: date
    status: RunStatus
    options: RunOptions
    initiated_by: UUID
    initiated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    total_duration_ms: int | None = None
    error_message: str | None = None
    cancel_requested_at: datetime | None = None
    cancel_requested_by: UUID | None = None
    supersedes_run_id: UUID | None = None
    seq: int | None = None
    steps: tuple[RunStep, ...] = ()
    result: ConsolidatedResult | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def step(self, step_type: StepType) -> RunStep | None:
        for step in self.steps:
            if step.step_type == step_type:
                return step
        return None
