"""
Run locks -- mutual exclusion per (group, period).

Contract:
    ``try_acquire(key)`` returns True when the caller now holds the lock for
    key and False when someone else does; it never blocks. ``release(key)``
    frees it. The run orchestrator acquires before creating a run and
    releases when the run reaches a terminal state.

Architecture: consolidation_runs/services.

Backends:
    InProcessRunLock        -- a guarded set of held keys; one process.
    PostgresAdvisoryRunLock -- pg_try_advisory_lock on a dedicated
                               connection per held key; works across
                               processes sharing the database.
"""

from __future__ import annotations

import hashlib
import threading
from typing import Protocol
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from consolidation_kernel.logging_config import get_logger

logger = get_logger("runs.lock")


def run_lock_key(group_id: UUID, period_key: str) -> str:
    return f"{group_id}:{period_key}"


def advisory_lock_id(key: str) -> int:
    """Signed 64-bit id derived from key, as pg_advisory_lock expects."""
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class RunLock(Protocol):
    def try_acquire(self, key: str) -> bool: ...

    def release(self, key: str) -> None: ...

    def is_held(self, key: str) -> bool: ...


class InProcessRunLock:
    """Registry of held keys guarded by a threading.Lock."""

    def __init__(self):
        self._guard = threading.Lock()
        self._held: set[str] = set()

    def try_acquire(self, key: str) -> bool:
        with self._guard:
            if key in self._held:
                return False
            self._held.add(key)
        logger.debug("run_lock_acquired", extra={"lock_key": key})
        return True

    def release(self, key: str) -> None:
        with self._guard:
            self._held.discard(key)
        logger.debug("run_lock_released", extra={"lock_key": key})

    def is_held(self, key: str) -> bool:
        with self._guard:
            return key in self._held


class PostgresAdvisoryRunLock:
    """
    Session-level PostgreSQL advisory lock per key.

    Each held key keeps its own AUTOCOMMIT connection open; closing that
    connection (including on process death) releases the lock.
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._guard = threading.Lock()
        self._connections: dict[str, Connection] = {}

    def try_acquire(self, key: str) -> bool:
        with self._guard:
            if key in self._connections:
                return False
            connection = self._engine.connect().execution_options(isolation_level="AUTOCOMMIT")
            acquired = connection.execute(
                text("SELECT pg_try_advisory_lock(:lock_id)"),
                {"lock_id": advisory_lock_id(key)},
            ).scalar()
            if not acquired:
                connection.close()
                return False
            self._connections[key] = connection
        logger.debug("run_lock_acquired", extra={"lock_key": key, "backend": "postgres"})
        return True

    def release(self, key: str) -> None:
        with self._guard:
            connection = self._connections.pop(key, None)
        if connection is None:
            return
        try:
            connection.execute(
                text("SELECT pg_advisory_unlock(:lock_id)"),
                {"lock_id": advisory_lock_id(key)},
            )
        finally:
            connection.close()
        logger.debug("run_lock_released", extra={"lock_key": key, "backend": "postgres"})

    def is_held(self, key: str) -> bool:
        with self._guard:
            return key in self._connections


def run_lock_for(engine: Engine) -> RunLock:
    """Advisory locks on PostgreSQL, the in-process registry otherwise."""
    if engine.dialect.name == "postgresql":
        return PostgresAdvisoryRunLock(engine)
    return InProcessRunLock()
