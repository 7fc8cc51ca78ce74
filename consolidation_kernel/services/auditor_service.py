"""
AuditorService -- tamper-evident audit trail for consolidation runs.

Responsibility:
    Creates immutable, hash-chained audit events for every terminal run
    transition (Completed, Failed, Cancelled), including the initiator and
    the run duration. Provides chain validation and per-run traces.

Architecture position:
    Kernel > Services -- imperative shell. Used by the database audit sink
    of the run orchestrator.

Invariants enforced:
    - Sequence monotonicity via SequenceService (allocated before the
      previous hash is read, so concurrent writers serialize on the counter).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
    - Append-only (ORM listeners on AuditEvent).

Failure modes:
    - AuditChainBrokenError from validate_chain().
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from consolidation_kernel.domain.clock import Clock, SystemClock
from consolidation_kernel.exceptions import AuditChainBrokenError
from consolidation_kernel.logging_config import get_logger
from consolidation_kernel.models.audit_event import AuditAction, AuditEvent
from consolidation_kernel.services.sequence_service import SequenceService
from consolidation_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("services.auditor")

RUN_ENTITY = "ConsolidationRun"


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events of one entity in chronological order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


_ACTION_BY_STATUS = {
    "completed": AuditAction.RUN_COMPLETED,
    "failed": AuditAction.RUN_FAILED,
    "cancelled": AuditAction.RUN_CANCELLED,
}


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_event = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last_event.hash if last_event else None

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = payload or {}
        computed_payload_hash = hash_payload(payload_data)
        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    def record_run_transition(
        self,
        run_id: UUID,
        status: str,
        actor_id: UUID,
        payload: dict[str, Any],
    ) -> AuditEvent:
        """Record a terminal run transition. status is a terminal RunStatus value."""
        action = _ACTION_BY_STATUS.get(status)
        if action is None:
            raise ValueError(f"Not a terminal run status: {status!r}")
        return self._create_audit_event(RUN_ENTITY, run_id, action, actor_id, payload)

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If any hash or link does not match.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(str(events[0].id), "None", events[0].prev_hash)

        for i, event in enumerate(events):
            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action,
                payload_hash=hash_payload(event.payload or {}),
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)

            if i > 0 and event.prev_hash != events[i - 1].hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id), events[i - 1].hash, event.prev_hash or "None"
                )

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    def get_trace(self, entity_id: UUID, entity_type: str = RUN_ENTITY) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                action=AuditAction(event.action),
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                payload=event.payload or {},
                hash=event.hash,
            )
            for event in events
        )
        return AuditTrace(entity_type=entity_type, entity_id=entity_id, entries=entries)
