"""
SequenceService -- Transactional monotonic sequence allocation.

Responsibility:
    Hands out strictly increasing integers per named sequence (audit event
    seq, consolidation run number) from a locked counter row.

Architecture position:
    Kernel > Services -- imperative shell. Flushes, never commits.

Invariants enforced:
    - The counter is incremented with a single UPDATE before it is read, so
      the row write lock serializes concurrent allocators on PostgreSQL and
      SQLite alike. The aggregate-max-plus-one pattern is never used.
"""

from sqlalchemy import BigInteger, String, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from consolidation_kernel.db.base import Base
from consolidation_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """One named sequence and its current value."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - On rollback the value is returned to the pool.
    """

    AUDIT_EVENT = "audit_event"
    CONSOLIDATION_RUN = "consolidation_run"

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """Increment and return the next value of a named sequence (always > 0)."""
        result = self._session.execute(
            update(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .values(current_value=SequenceCounter.current_value + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            # First use of this sequence. Another session may create it at
            # the same time; the savepoint keeps the caller's work intact.
            savepoint = self._session.begin_nested()
            try:
                self._session.add(SequenceCounter(name=sequence_name, current_value=1))
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                savepoint.rollback()
                return self.next_value(sequence_name)

        value = self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.name == sequence_name
            )
        ).scalar_one()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value
