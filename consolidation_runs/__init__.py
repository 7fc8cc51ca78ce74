"""
consolidation_runs -- Consolidation run lifecycle.

Accepts runs for a (group, period), executes them on a bounded worker pool
and persists each run's status, result and audit trail. Composes the pure
engines in consolidation_engines with the persistence and locking in this
package.

Architecture:
    consolidation_runs/ is a top-level package. Nothing in kernel/ or
    engines/ imports from consolidation_runs; models are imported lazily
    by consolidation_kernel.db.engine.create_tables().

Invariants:
    - One active run per (group, period), enforced by the run lock.
    - Status moves Pending -> InProgress -> Completed | Failed | Cancelled.
    - Terminal runs and results are immutable (ORM listeners).
    - Clock injection: no datetime.now() calls.
    - One audit record per terminal transition.
    - Cooperative cancellation at member boundaries.
"""
