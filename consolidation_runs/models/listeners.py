"""
Immutability listeners for runs and results.

    - ConsolidationRunModel: a terminal run is never updated or deleted, and
      a non-terminal run only moves along the allowed status transitions.
    - ConsolidatedResultModel: never updated, never deleted.

Registered alongside the kernel listeners by
``register_run_immutability_listeners()``.
"""

from sqlalchemy import event, inspect

from consolidation_kernel.db.immutability import (
    block,
    changed_fields,
    register_immutability_listeners,
    safe_remove_listener,
)
from consolidation_runs.domain.types import RunStatus
from consolidation_runs.models.run import ConsolidatedResultModel, ConsolidationRunModel


def _previous_status(target) -> RunStatus:
    history = inspect(target).attrs.status.history
    if history.deleted:
        return RunStatus(history.deleted[0])
    return RunStatus(target.status)


def _check_run_update(mapper, connection, target):
    if not changed_fields(target):
        return
    previous = _previous_status(target)
    if previous.is_terminal:
        block(
            "ConsolidationRun", target, "UPDATE",
            f"Run is {previous.value} and can no longer be modified",
        )
    current = RunStatus(target.status)
    if current != previous and not previous.can_transition_to(current):
        block(
            "ConsolidationRun", target, "UPDATE",
            f"Illegal status transition {previous.value} -> {current.value}",
        )


def _check_run_delete(mapper, connection, target):
    if RunStatus(target.status).is_terminal:
        block("ConsolidationRun", target, "DELETE", "Terminal runs cannot be deleted")


def _check_result_update(mapper, connection, target):
    if changed_fields(target):
        block("ConsolidatedResult", target, "UPDATE", "Consolidated results are immutable")


def _check_result_delete(mapper, connection, target):
    block("ConsolidatedResult", target, "DELETE", "Consolidated results cannot be deleted")


_LISTENERS = (
    (ConsolidationRunModel, "before_update", _check_run_update),
    (ConsolidationRunModel, "before_delete", _check_run_delete),
    (ConsolidatedResultModel, "before_update", _check_result_update),
    (ConsolidatedResultModel, "before_delete", _check_result_delete),
)


def register_run_immutability_listeners() -> None:
    """Register kernel and run listeners. Idempotent."""
    register_immutability_listeners()
    for target, name, fn in _LISTENERS:
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_run_immutability_listeners() -> None:
    """FOR TESTING ONLY."""
    for target, name, fn in _LISTENERS:
        safe_remove_listener(target, name, fn)
