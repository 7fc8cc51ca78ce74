"""
Tests for the (group, period) run locks.
"""

import threading

import pytest

from consolidation_kernel.db.engine import build_engine
from consolidation_runs.services.run_lock import (
    InProcessRunLock,
    PostgresAdvisoryRunLock,
    advisory_lock_id,
    run_lock_for,
    run_lock_key,
)
from tests.fakes import GROUP_ID

KEY = run_lock_key(GROUP_ID, "2024-12")


class TestKeys:
    def test_key_combines_group_and_period(self):
        assert KEY == f"{GROUP_ID}:2024-12"

    def test_advisory_id_is_stable_signed_64_bit(self):
        lock_id = advisory_lock_id(KEY)
        assert lock_id == advisory_lock_id(KEY)
        assert -(2**63) <= lock_id < 2**63
        assert lock_id != advisory_lock_id(run_lock_key(GROUP_ID, "2024-11"))


class TestInProcessRunLock:
    def test_second_acquire_fails(self):
        lock = InProcessRunLock()
        assert lock.try_acquire(KEY)
        assert not lock.try_acquire(KEY)
        assert lock.is_held(KEY)

    def test_release_allows_reacquire(self):
        lock = InProcessRunLock()
        lock.try_acquire(KEY)
        lock.release(KEY)
        assert not lock.is_held(KEY)
        assert lock.try_acquire(KEY)

    def test_keys_are_independent(self):
        lock = InProcessRunLock()
        assert lock.try_acquire(KEY)
        assert lock.try_acquire(run_lock_key(GROUP_ID, "2025-01"))

    def test_release_of_free_key_is_harmless(self):
        InProcessRunLock().release(KEY)

    def test_exactly_one_thread_wins(self):
        lock = InProcessRunLock()
        barrier = threading.Barrier(8)
        wins = []

        def contend():
            barrier.wait()
            if lock.try_acquire(KEY):
                wins.append(threading.get_ident())

        threads = [threading.Thread(target=contend) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert len(wins) == 1


class TestBackendSelection:
    def test_sqlite_uses_in_process_lock(self, engine):
        assert isinstance(run_lock_for(engine), InProcessRunLock)


@pytest.mark.postgres
class TestPostgresAdvisoryRunLock:
    def test_lock_excludes_second_holder(self, postgres_url):
        engine = build_engine(postgres_url)
        try:
            first = PostgresAdvisoryRunLock(engine)
            second = PostgresAdvisoryRunLock(engine)
            assert isinstance(run_lock_for(engine), PostgresAdvisoryRunLock)
            assert first.try_acquire(KEY)
            assert not second.try_acquire(KEY)
            first.release(KEY)
            assert second.try_acquire(KEY)
            second.release(KEY)
        finally:
            engine.dispose()
