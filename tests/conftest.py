"""
Pytest fixtures for the consolidation engine test suite.

Provides:
- Structured logging configuration and log capture
- A file-backed SQLite database per test (tmp_path), with all tables
- Session factory and a plain session for repository-level tests
- DeterministicClock
- A wired RunOrchestrator over in-memory collaborators

PostgreSQL-only behaviour (advisory locks) is covered by tests marked
``postgres``, which are skipped unless DATABASE_URL points at PostgreSQL.
"""

import json
import logging
import os
from io import StringIO

import pytest
from sqlalchemy.orm import sessionmaker

from consolidation_config.schema import EngineSettings, RetrySettings
from consolidation_kernel.db.engine import build_engine, create_tables, session_scope
from consolidation_kernel.db.immutability import unregister_immutability_listeners
from consolidation_kernel.domain.clock import DeterministicClock
from consolidation_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from consolidation_runs.models.listeners import (
    register_run_immutability_listeners,
    unregister_run_immutability_listeners,
)
from consolidation_runs.services.collaborators import DatabaseAuditSink
from consolidation_runs.services.repository import RunRepository
from consolidation_runs.services.run_orchestrator import RunOrchestrator
from tests.fakes import (
    ACTOR_ID,
    InMemoryRateProvider,
    InMemoryTrialBalanceSource,
    scenario_balances,
    scenario_group,
    scenario_rates,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture consolidation logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            ...
            logs = captured_logs()
            assert any(r["message"] == "run_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("consolidation")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_run_immutability_listeners()
    yield
    unregister_run_immutability_listeners()
    unregister_immutability_listeners()


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'consolidation.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture
def postgres_url():
    url = os.environ.get("DATABASE_URL", "")
    if not url.startswith("postgresql"):
        pytest.skip("DATABASE_URL does not point at PostgreSQL")
    return url


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def settings():
    return EngineSettings(
        max_workers=2,
        retry=RetrySettings(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0),
    )


@pytest.fixture
def group():
    return scenario_group()


@pytest.fixture
def saved_group(session_factory, group):
    with session_scope(session_factory) as s:
        RunRepository(s).save_group(group, ACTOR_ID)
    return group


@pytest.fixture
def trial_balances():
    return InMemoryTrialBalanceSource(scenario_balances())


@pytest.fixture
def rates() -> InMemoryRateProvider:
    return scenario_rates()


@pytest.fixture
def make_orchestrator(session_factory, trial_balances, rates, settings, clock):
    """Build RunOrchestrators over the test database; overrides replace collaborators."""
    created = []

    def _make(**overrides) -> RunOrchestrator:
        kwargs = dict(
            session_factory=session_factory,
            trial_balance_source=trial_balances,
            rate_provider=rates,
            audit_sink=DatabaseAuditSink(clock),
            settings=settings,
            clock=clock,
            sleep=lambda seconds: None,
        )
        kwargs.update(overrides)
        orch = RunOrchestrator(**kwargs)
        created.append(orch)
        return orch

    yield _make
    for orch in created:
        orch.shutdown(wait=True)


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()
