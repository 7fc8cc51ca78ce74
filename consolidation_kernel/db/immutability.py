"""
Module: consolidation_kernel.db.immutability
Responsibility: ORM event listeners that keep append-only records append-only.

    Kernel records covered here:
      - AuditEvent: never updated, never deleted.
      - ExchangeRateModel: rate must be positive on insert.

    consolidation_runs registers its own listeners (terminal runs and
    consolidated results) through the helpers exported here.

Architecture position: Kernel > DB.

Design decisions:
    1. updated_at / updated_by_id are audit metadata and may change on an
       otherwise immutable row.
    2. Listeners raise ImmutabilityViolationError, which aborts the flush;
       the surrounding session_scope() rolls back.
"""

from decimal import Decimal

from sqlalchemy import event, inspect

from consolidation_kernel.exceptions import ImmutabilityViolationError
from consolidation_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})


def changed_fields(target) -> list[str]:
    """Attribute names with pending changes, ignoring audit metadata."""
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in AUDIT_METADATA_FIELDS and attr.history.has_changes()
    ]


def block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_audit_event_immutability(mapper, connection, target):
    block("AuditEvent", target, "UPDATE", "Audit events are immutable and cannot be modified")


def _check_audit_event_delete(mapper, connection, target):
    block("AuditEvent", target, "DELETE", "Audit events cannot be deleted")


def _check_exchange_rate_insert(mapper, connection, target):
    rate = target.rate
    if rate is None or Decimal(str(rate)) <= 0:
        logger.error(
            "invalid_exchange_rate_blocked",
            extra={
                "pair": f"{target.from_currency}/{target.to_currency}",
                "rate": str(rate),
            },
        )
        raise ValueError(f"Exchange rate must be positive: {rate}")


def safe_remove_listener(target, event_name, listener_fn) -> None:
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def register_immutability_listeners() -> None:
    """
    Register kernel immutability listeners. Idempotent.

    Call during application initialization, after models are imported.
    """
    from consolidation_kernel.models.audit_event import AuditEvent
    from consolidation_kernel.models.exchange_rate import ExchangeRateModel

    listeners = (
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (ExchangeRateModel, "before_insert", _check_exchange_rate_insert),
    )
    for target, name, fn in listeners:
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners() -> None:
    """FOR TESTING ONLY: tests that tamper with the chain on purpose."""
    from consolidation_kernel.models.audit_event import AuditEvent
    from consolidation_kernel.models.exchange_rate import ExchangeRateModel

    safe_remove_listener(AuditEvent, "before_update", _check_audit_event_immutability)
    safe_remove_listener(AuditEvent, "before_delete", _check_audit_event_delete)
    safe_remove_listener(ExchangeRateModel, "before_insert", _check_exchange_rate_insert)
