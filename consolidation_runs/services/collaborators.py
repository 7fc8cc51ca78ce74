"""
Collaborator contracts of the run orchestrator and their stock adapters.

Contract:
    TrialBalanceSource   -- per-company trial balance as of a date.
    ExchangeRateProvider -- spot or period-average rate for a pair and date.
    AuditSink            -- receives one AuditRecord per terminal run
                            transition.

    Sources raise ExchangeRateNotFoundError (validation, never retried) when
    no rate exists and an InfrastructureError on transport failure.

Adapters:
    StoredExchangeRateProvider -- reads the exchange_rates table.
    DatabaseAuditSink          -- hash-chained AuditEvents via AuditorService.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from consolidation_kernel.db.engine import session_scope
from consolidation_kernel.domain.clock import Clock, SystemClock
from consolidation_kernel.domain.ledger import TrialBalanceLine
from consolidation_kernel.exceptions import (
    ExchangeRateNotFoundError,
    ExchangeRateUnavailableError,
)
from consolidation_kernel.logging_config import get_logger
from consolidation_kernel.models.exchange_rate import ExchangeRateModel, RateKind
from consolidation_kernel.services.auditor_service import AuditorService

logger = get_logger("runs.collaborators")


class TrialBalanceSource(Protocol):
    def get_trial_balance(self, company_id: UUID, as_of_date: date) -> Sequence[TrialBalanceLine]:
        ...


class ExchangeRateProvider(Protocol):
    def get_rate(
        self,
        from_currency: str,
        to_currency: str,
        as_of: date,
        kind: RateKind,
    ) -> Decimal:
        ...


@dataclass(frozen=True)
class AuditRecord:
    """One terminal run transition, as handed to the audit sink."""

    run_id: UUID
    organization_id: UUID
    group_id: UUID
    period: str
    status: str
    actor_id: UUID
    initiated_by: UUID
    occurred_at: datetime
    duration_ms: int | None = None
    error_message: str | None = None
    content_hash: str | None = None

    def payload(self) -> dict:
        """JSON-native payload for the audit event."""
        return {
            "organization_id": str(self.organization_id),
            "group_id": str(self.group_id),
            "period": self.period,
            "status": self.status,
            "initiated_by": str(self.initiated_by),
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
            "content_hash": self.content_hash,
        }


class AuditSink(Protocol):
    def emit(self, record: AuditRecord, session: Session) -> None:
        """Called inside the transaction that commits the transition."""
        ...


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class StoredExchangeRateProvider:
    """
    Rates from the exchange_rates table.

    The rate used is the latest one of the requested kind effective on or
    before the date. Same-currency pairs are 1 without a lookup.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get_rate(
        self,
        from_currency: str,
        to_currency: str,
        as_of: date,
        kind: RateKind,
    ) -> Decimal:
        if from_currency == to_currency:
            return Decimal("1")
        try:
            with session_scope(self._session_factory) as session:
                rate = session.execute(
                    select(ExchangeRateModel.rate)
                    .where(
                        ExchangeRateModel.from_currency == from_currency,
                        ExchangeRateModel.to_currency == to_currency,
                        ExchangeRateModel.rate_kind == kind.value,
                        ExchangeRateModel.effective_date <= as_of,
                    )
                    .order_by(ExchangeRateModel.effective_date.desc())
                    .limit(1)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise ExchangeRateUnavailableError(
                from_currency, to_currency, str(exc), transient=True,
            ) from exc

        if rate is None:
            logger.warning(
                "exchange_rate_not_found",
                extra={
                    "pair": f"{from_currency}/{to_currency}",
                    "as_of": as_of.isoformat(),
                    "rate_kind": kind.value,
                },
            )
            raise ExchangeRateNotFoundError(from_currency, to_currency, as_of.isoformat(), kind.value)
        return Decimal(str(rate))


class DatabaseAuditSink:
    """Writes each record as a hash-chained AuditEvent in the caller's transaction."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def emit(self, record: AuditRecord, session: Session) -> None:
        AuditorService(session, self._clock).record_run_transition(
            run_id=record.run_id,
            status=record.status,
            actor_id=record.actor_id,
            payload=record.payload(),
        )
