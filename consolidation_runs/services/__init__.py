"""
consolidation_runs.services -- Run lifecycle services.

RunOrchestrator executes runs on a worker pool; RunRepository persists
groups, runs and results; run_lock serializes runs per (group, period);
collaborators defines the trial balance, exchange rate and audit seams.
"""

from consolidation_runs.services.collaborators import (
    AuditRecord,
    AuditSink,
    DatabaseAuditSink,
    ExchangeRateProvider,
    StoredExchangeRateProvider,
    TrialBalanceSource,
)
from consolidation_runs.services.repository import RunRepository
from consolidation_runs.services.retry import call_with_retry
from consolidation_runs.services.run_lock import (
    InProcessRunLock,
    PostgresAdvisoryRunLock,
    RunLock,
    run_lock_for,
    run_lock_key,
)
from consolidation_runs.services.run_orchestrator import RunOrchestrator

__all__ = [
    "AuditRecord",
    "AuditSink",
    "DatabaseAuditSink",
    "ExchangeRateProvider",
    "InProcessRunLock",
    "PostgresAdvisoryRunLock",
    "RunLock",
    "RunOrchestrator",
    "RunRepository",
    "StoredExchangeRateProvider",
    "TrialBalanceSource",
    "call_with_retry",
    "run_lock_for",
    "run_lock_key",
]
