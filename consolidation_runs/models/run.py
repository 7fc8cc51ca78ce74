"""
ORM models for consolidation runs and their results.

Contract:
    ConsolidationRunModel persists the run lifecycle and its per-step
    progress (a JSON list of RunStep dicts); ConsolidatedResultModel persists
    the consolidated trial balance as a JSON payload with its content hash.
    ``to_dto()`` returns the frozen domain snapshot.

Architecture: consolidation_runs/models. Imports from consolidation_kernel
    and the run domain types.

Invariants enforced:
    - seq is allocated via SequenceService and is unique.
    - A result row exists only for a Completed run, one per run.
    - Terminal runs and all results are immutable
      (consolidation_runs.models.listeners).
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from consolidation_kernel.db.base import TrackedBase, UUIDString
from consolidation_runs.domain.types import (
    ConsolidationRun,
    PeriodRef,
    RunOptions,
    RunStatus,
    RunStep,
)


class ConsolidationRunModel(TrackedBase):
    """Persistent run record. created_by_id is the initiator."""

    __tablename__ = "consolidation_runs"

    __table_args__ = (
        Index(
            "ix_consolidation_runs_group_period",
            "organization_id", "group_id", "fiscal_year", "period_number", "status",
        ),
        Index("ix_consolidation_runs_status", "status"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    group_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("consolidation_groups.id"), nullable=False,
    )
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_number: Mapped[int] = mapped_column(Integer, nullable=False)
    as_of_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    options: Mapped[dict] = mapped_column(JSON, nullable=False)
    initiated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancel_requested_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    cancel_requested_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    supersedes_run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    seq: Mapped[int] = mapped_column(nullable=False, unique=True)
    steps: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    result: Mapped[ConsolidatedResultModel | None] = relationship(
        "ConsolidatedResultModel", back_populates="run", uselist=False,
    )

    @property
    def run_status(self) -> RunStatus:
        return RunStatus(self.status)

    @property
    def period(self) -> PeriodRef:
        return PeriodRef(self.fiscal_year, self.period_number)

    def to_dto(self, include_result: bool = True) -> ConsolidationRun:
        result = None
        if include_result and self.result is not None:
            result = self.result.to_domain()
        return ConsolidationRun(
            run_id=self.id,
            organization_id=self.organization_id,
            group_id=self.group_id,
            period=self.period,
            as_of_date=self.as_of_date,
            status=self.run_status,
            options=RunOptions.from_dict(self.options),
            initiated_by=self.created_by_id,
            initiated_at=self.initiated_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            total_duration_ms=self.total_duration_ms,
            error_message=self.error_message,
            cancel_requested_at=self.cancel_requested_at,
            cancel_requested_by=self.cancel_requested_by_id,
            supersedes_run_id=self.supersedes_run_id,
            seq=self.seq,
            steps=tuple(RunStep.from_dict(s) for s in self.steps or ()),
            result=result,
        )

    def __repr__(self) -> str:
        return f"<ConsolidationRun {self.id} {self.period} {self.status}>"


class ConsolidatedResultModel(TrackedBase):
    """The consolidated trial balance of one Completed run."""

    __tablename__ = "consolidated_results"

    __table_args__ = (
        Index("ix_consolidated_results_org", "organization_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    run_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("consolidation_runs.id"), nullable=False, unique=True,
    )
    reporting_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    run: Mapped[ConsolidationRunModel] = relationship(
        "ConsolidationRunModel", back_populates="result",
    )

    def to_domain(self):
        from consolidation_engines.aggregation import ConsolidatedResult

        return ConsolidatedResult.from_dict(self.payload)
