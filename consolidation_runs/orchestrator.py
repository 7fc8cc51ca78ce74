"""
ConsolidationOrchestrator -- DI container for the consolidation engine.

Contract:
    Composes settings, the session factory, the run lock for the database
    dialect, the stock collaborators and a RunOrchestrator. Single place
    where all run dependencies are wired.

Architecture: consolidation_runs (top-level). The canonical entry point for
    host services: build one per process with ``from_engine()`` and call
    ``initiate_run()`` / ``get_run()`` / ``cancel_run()``.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Immutability listeners for runs, results and audit events are
      registered before the first run is accepted.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from pathlib import Path
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from consolidation_config import EngineSettings, compute_checksum, load_settings
from consolidation_kernel.db.engine import session_scope
from consolidation_kernel.domain.clock import Clock, SystemClock
from consolidation_kernel.domain.group import ConsolidationGroup
from consolidation_kernel.logging_config import get_logger
from consolidation_runs.domain.types import ConsolidationRun, PeriodRef, RunOptions
from consolidation_runs.models.listeners import register_run_immutability_listeners
from consolidation_runs.services.collaborators import (
    AuditSink,
    DatabaseAuditSink,
    ExchangeRateProvider,
    StoredExchangeRateProvider,
    TrialBalanceSource,
)
from consolidation_runs.services.repository import RunRepository
from consolidation_runs.services.run_lock import RunLock, run_lock_for
from consolidation_runs.services.run_orchestrator import RunOrchestrator

logger = get_logger("runs.facade")


class ConsolidationOrchestrator:
    """DI container for consolidation runs.

    Contract:
        - ``from_engine()`` creates a fully wired orchestrator.
        - Run operations delegate to the wrapped RunOrchestrator.
        - ``save_group()`` persists group setup in its own transaction.

    Non-goals:
        - Does NOT create tables -- migrations or create_tables() do that.
        - Does NOT own the engine; ``shutdown()`` stops workers only.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        runs: RunOrchestrator,
        settings: EngineSettings,
        clock: Clock,
    ) -> None:
        self._session_factory = session_factory
        self._runs = runs
        self._settings = settings
        self._clock = clock

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_engine(
        cls,
        engine: Engine,
        trial_balance_source: TrialBalanceSource,
        rate_provider: ExchangeRateProvider | None = None,
        audit_sink: AuditSink | None = None,
        settings: EngineSettings | str | Path | None = None,
        clock: Clock | None = None,
        run_lock: RunLock | None = None,
    ) -> ConsolidationOrchestrator:
        """Create a fully wired orchestrator bound to an engine.

        Args:
            engine: SQLAlchemy engine holding the consolidation tables.
            trial_balance_source: Host-provided trial balance adapter.
            rate_provider: Defaults to the exchange_rates table.
            audit_sink: Defaults to hash-chained audit events.
            settings: An EngineSettings, a YAML path, or None for the
                packaged defaults.
            clock: Optional clock for deterministic testing.
            run_lock: Defaults to advisory locks on PostgreSQL and an
                in-process registry elsewhere.
        """
        if not isinstance(settings, EngineSettings):
            settings = load_settings(settings)
        effective_clock = clock or SystemClock()
        session_factory = sessionmaker(bind=engine, expire_on_commit=False)

        register_run_immutability_listeners()

        runs = RunOrchestrator(
            session_factory=session_factory,
            trial_balance_source=trial_balance_source,
            rate_provider=rate_provider or StoredExchangeRateProvider(session_factory),
            audit_sink=audit_sink or DatabaseAuditSink(effective_clock),
            settings=settings,
            clock=effective_clock,
            run_lock=run_lock or run_lock_for(engine),
        )
        logger.info(
            "consolidation_orchestrator_ready",
            extra={
                "dialect": engine.dialect.name,
                "max_workers": settings.max_workers,
                "settings_checksum": compute_checksum(settings),
            },
        )
        return cls(session_factory, runs, settings, effective_clock)

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def save_group(self, group: ConsolidationGroup, created_by_id: UUID) -> None:
        with session_scope(self._session_factory) as session:
            RunRepository(session).save_group(group, created_by_id)

    def list_runs(
        self,
        organization_id: UUID,
        group_id: UUID,
        period: PeriodRef | None = None,
    ) -> list[ConsolidationRun]:
        with session_scope(self._session_factory) as session:
            return RunRepository(session).list_runs(organization_id, group_id, period)

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    def initiate_run(
        self,
        organization_id: UUID,
        group_id: UUID,
        period: PeriodRef,
        as_of_date: date,
        initiated_by: UUID,
        options: RunOptions | None = None,
    ) -> UUID:
        return self._runs.initiate_run(
            organization_id, group_id, period, as_of_date, initiated_by, options,
        )

    def get_run(self, organization_id: UUID, run_id: UUID) -> ConsolidationRun:
        return self._runs.get_run(organization_id, run_id)

    def cancel_run(self, organization_id: UUID, run_id: UUID, actor_id: UUID) -> None:
        self._runs.cancel_run(organization_id, run_id, actor_id)

    def wait_for_run(self, run_id: UUID, timeout: float | None = None) -> ConsolidationRun:
        return self._runs.wait_for_run(run_id, timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._runs.shutdown(wait)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def runs(self) -> RunOrchestrator:
        return self._runs

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def session_factory(self) -> Callable[[], Session]:
        return self._session_factory
