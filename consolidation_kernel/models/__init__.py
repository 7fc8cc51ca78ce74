"""Kernel ORM models. Importing this package registers them on Base.metadata."""

from consolidation_kernel.models.audit_event import AuditAction, AuditEvent
from consolidation_kernel.models.exchange_rate import ExchangeRateModel
from consolidation_kernel.services.sequence_service import SequenceCounter

__all__ = ["AuditAction", "AuditEvent", "ExchangeRateModel", "SequenceCounter"]
