"""
RunOrchestrator -- lifecycle and pipeline of consolidation runs.

Contract:
    ``initiate_run()`` validates the group, takes the (group, period) run
    lock, persists a Pending run and hands it to the worker pool; it returns
    the run id at once. ``get_run()`` and ``cancel_run()`` query and cancel.
    Each worker executes one run's pipeline sequentially:

        1. validate: resolve eligible members and translation rates
        2. consolidate_members: per member, checkpoint, fetch trial balance,
           translate, consolidate
        3. checkpoint; eliminate: evaluate elimination rules across all
           members (skipped when the group has no automatic rules)
        4. checkpoint; aggregate
        5. Completed (result persisted in the same transaction), or Failed

    Step progress (RunStep per StepType) is persisted when each step starts
    and with the terminal transition.

Architecture: consolidation_runs/services. Composes the pure engines with
    the repository, the run lock and the collaborators.

Invariants enforced:
    - At most one active run per (group, period): the run lock is held from
      initiation until the run is terminal.
    - A Completed run for (group, period) blocks a new run unless
      force_regeneration is set; the new run records the one it supersedes.
    - Cancellation is cooperative: an in-memory event plus the persisted
      cancel request, checked at each member boundary and before
      elimination and aggregation. A cancelled run persists no result.
    - Every terminal transition writes exactly one audit record, in the
      transaction that commits the transition. A failing audit sink is
      retried; once retries run out the run ends Failed with no record and
      an error_message naming the audit failure.
    - All timestamps come from the injected Clock.

Failure modes:
    - Configuration and conflict errors are raised by initiate_run() before
      any run exists.
    - Validation and infrastructure errors during the pipeline end the run
      Failed with a readable error_message. Transient infrastructure errors
      are retried first.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from consolidation_config.schema import EngineSettings
from consolidation_engines.aggregation import ConsolidatedResult, ConsolidationAggregator
from consolidation_engines.elimination import EliminationEvaluator
from consolidation_engines.member import MemberConsolidator, MemberContribution
from consolidation_engines.translation import CurrencyTranslator, TranslationRates
from consolidation_kernel.db.engine import session_scope
from consolidation_kernel.domain.clock import Clock, SystemClock
from consolidation_kernel.domain.group import (
    ConsolidationGroup,
    ConsolidationMember,
    ConsolidationMethod,
)
from consolidation_kernel.domain.ledger import (
    IssueCode,
    TrialBalanceLine,
    ValidationIssue,
    sum_amounts,
)
from consolidation_kernel.exceptions import (
    AuditSinkError,
    ConsolidationError,
    ConsolidationValidationError,
    ExchangeRateNotFoundError,
    RunAlreadyExistsError,
    RunAlreadyInProgressError,
    RunCancelledError,
)
from consolidation_kernel.logging_config import LogContext, get_logger
from consolidation_kernel.models.exchange_rate import RateKind
from consolidation_runs.domain.types import (
    ConsolidationRun,
    PeriodRef,
    RunOptions,
    RunStatus,
    RunStep,
    StepStatus,
    StepType,
    initial_steps,
)
from consolidation_runs.models.run import ConsolidationRunModel
from consolidation_runs.services.collaborators import (
    AuditRecord,
    AuditSink,
    DatabaseAuditSink,
    ExchangeRateProvider,
    TrialBalanceSource,
)
from consolidation_runs.services.repository import RunRepository
from consolidation_runs.services.retry import call_with_retry
from consolidation_runs.services.run_lock import InProcessRunLock, RunLock, run_lock_key

logger = get_logger("runs.orchestrator")


@dataclass
class _RunHandle:
    """In-memory state of a run owned by this process."""

    run_id: UUID
    organization_id: UUID
    group: ConsolidationGroup
    period: PeriodRef
    as_of_date: date
    options: RunOptions
    initiated_by: UUID
    lock_key: str
    cancel_event: threading.Event = field(default_factory=threading.Event)
    future: Future | None = None
    started: float | None = None
    steps: dict[StepType, RunStep] = field(
        default_factory=lambda: {step.step_type: step for step in initial_steps()},
    )
    current_step: StepType | None = None
    step_started: float | None = None

    def step_snapshot(self) -> tuple[RunStep, ...]:
        return tuple(self.steps[step_type] for step_type in StepType)


class RunOrchestrator:
    """
    Run lifecycle service.

    Contract:
        Thread-safe. Opens one session per unit of work through
        session_factory; never shares a session across threads.

    Non-goals:
        - No engine-side timeout; callers apply their own deadline.
        - No queuing of a second run for a locked (group, period).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        trial_balance_source: TrialBalanceSource,
        rate_provider: ExchangeRateProvider,
        audit_sink: AuditSink | None = None,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
        run_lock: RunLock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._trial_balances = trial_balance_source
        self._rates = rate_provider
        self._settings = settings or EngineSettings()
        self._clock = clock or SystemClock()
        self._audit_sink = audit_sink or DatabaseAuditSink(self._clock)
        self._lock = run_lock or InProcessRunLock()
        self._sleep = sleep

        accounts = self._settings.accounts
        self._translator = CurrencyTranslator(accounts.translation_adjustment)
        self._consolidator = MemberConsolidator(accounts)
        self._evaluator = EliminationEvaluator(accounts)
        self._aggregator = ConsolidationAggregator(accounts)

        self._pool = ThreadPoolExecutor(
            max_workers=self._settings.max_workers,
            thread_name_prefix="consolidation-run",
        )
        self._handles: dict[UUID, _RunHandle] = {}
        self._handles_guard = threading.Lock()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def initiate_run(
        self,
        organization_id: UUID,
        group_id: UUID,
        period: PeriodRef,
        as_of_date: date,
        initiated_by: UUID,
        options: RunOptions | None = None,
    ) -> UUID:
        """
        Accept a run and schedule it.

        Raises:
            ConfigurationError: Group missing, inactive, empty or invalid.
            RunAlreadyInProgressError: The (group, period) lock is held.
            RunAlreadyExistsError: A Completed run exists and
                force_regeneration is not set.
        """
        options = options or RunOptions()
        with LogContext.bind(group_id=str(group_id), actor_id=str(initiated_by)):
            with session_scope(self._session_factory) as session:
                group = RunRepository(session).load_group_snapshot(organization_id, group_id)

            lock_key = run_lock_key(group_id, period.key)
            if not self._lock.try_acquire(lock_key):
                logger.warning(
                    "run_rejected_in_progress",
                    extra={"period": period.key},
                )
                raise RunAlreadyInProgressError(str(group_id), period.key)

            try:
                with session_scope(self._session_factory) as session:
                    repo = RunRepository(session)
                    existing = repo.find_completed_run(organization_id, group_id, period)
                    existing_id = existing.id if existing is not None else None
                    if existing_id is not None and not options.force_regeneration:
                        raise RunAlreadyExistsError(str(group_id), period.key, str(existing_id))
                    run = repo.create_run(
                        organization_id=organization_id,
                        group_id=group_id,
                        period=period,
                        as_of_date=as_of_date,
                        options=options,
                        initiated_by=initiated_by,
                        initiated_at=self._clock.now(),
                        supersedes_run_id=existing_id,
                    )
            except Exception:
                self._lock.release(lock_key)
                raise

            handle = _RunHandle(
                run_id=run.run_id,
                organization_id=organization_id,
                group=group,
                period=period,
                as_of_date=as_of_date,
                options=options,
                initiated_by=initiated_by,
                lock_key=lock_key,
            )
            with self._handles_guard:
                self._handles[run.run_id] = handle
                handle.future = self._pool.submit(self._execute, handle)

            logger.info(
                "run_initiated",
                extra={
                    "run_id": str(run.run_id),
                    "period": period.key,
                    "as_of_date": as_of_date.isoformat(),
                    "member_count": len(group.active_members),
                    "options": options.to_dict(),
                },
            )
            return run.run_id

    def get_run(self, organization_id: UUID, run_id: UUID) -> ConsolidationRun:
        """Raises RunNotFoundError for unknown runs and other tenants' runs."""
        with session_scope(self._session_factory) as session:
            return RunRepository(session).get_run(organization_id, run_id)

    def cancel_run(self, organization_id: UUID, run_id: UUID, actor_id: UUID) -> None:
        """
        Request cancellation of a Pending or InProgress run.

        Raises:
            RunNotFoundError: Unknown run or another tenant's.
            AlreadyTerminalError: The run already ended.
        """
        with session_scope(self._session_factory) as session:
            RunRepository(session).request_cancel(
                organization_id, run_id, self._clock.now(), actor_id,
            )

        with self._handles_guard:
            handle = self._handles.get(run_id)
        logger.info(
            "run_cancel_requested",
            extra={"run_id": str(run_id), "actor_id": str(actor_id), "local": handle is not None},
        )
        if handle is None:
            # Owned by another process; its next checkpoint sees the request.
            return
        handle.cancel_event.set()
        if handle.future is not None and handle.future.cancel():
            # Never started: no worker will finalize it.
            try:
                self._finish_cancelled(handle, "before_start")
            finally:
                self._release(handle)

    def wait_for_run(self, run_id: UUID, timeout: float | None = None) -> ConsolidationRun:
        """Block until a locally owned run is terminal; return its snapshot."""
        with self._handles_guard:
            handle = self._handles.get(run_id)
        if handle is not None and handle.future is not None and not handle.future.cancelled():
            handle.future.result(timeout=timeout)
        with session_scope(self._session_factory) as session:
            return RunRepository(session).get_run_model(run_id).to_dto()

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
        logger.info("run_orchestrator_shutdown", extra={"wait": wait})

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def _execute(self, handle: _RunHandle) -> None:
        handle.started = time.monotonic()
        with LogContext.bind(
            run_id=str(handle.run_id),
            group_id=str(handle.group.group_id),
            actor_id=str(handle.initiated_by),
        ):
            try:
                self._checkpoint(handle, "start")
                with session_scope(self._session_factory) as session:
                    RunRepository(session).mark_in_progress(handle.run_id, self._clock.now())
                logger.info("run_started", extra={"period": handle.period.key})

                result = self._run_pipeline(handle)
                self._finish_completed(handle, result)
            except RunCancelledError as exc:
                self._end_step(handle, StepStatus.CANCELLED)
                self._finish_cancelled(handle, exc.checkpoint)
            except ConsolidationError as exc:
                self._end_step(handle, StepStatus.FAILED, error_message=str(exc))
                self._finish_failed(handle, str(exc), exc.code)
            except Exception as exc:
                logger.exception("run_unexpected_error")
                message = f"Unexpected error: {exc}"
                self._end_step(handle, StepStatus.FAILED, error_message=message)
                self._finish_failed(handle, message, "UNEXPECTED_ERROR")
            finally:
                self._release(handle)

    def _run_pipeline(self, handle: _RunHandle) -> ConsolidatedResult:
        group = handle.group
        options = handle.options
        issues: list[ValidationIssue] = []

        self._begin_step(handle, StepType.VALIDATE)
        members = self._eligible_members(handle, issues)
        rates = self._resolve_rates(handle, members, issues)
        members = [m for m in members if m.company_id in rates]
        self._end_step(handle, StepStatus.COMPLETED, details=f"{len(members)} member(s) eligible")

        self._begin_step(handle, StepType.CONSOLIDATE_MEMBERS)
        contributions: list[MemberContribution] = []
        parent_lines = self._fetch_balance(handle, group.parent.company_id, issues)
        if parent_lines is not None:
            translated = self._translate(handle, group.parent.company_id,
                                         group.parent.functional_currency,
                                         parent_lines, rates[group.parent.company_id])
            contributions.append(self._consolidator.consolidate_parent(group.parent, translated))

        for member in members:
            lines = self._fetch_balance(handle, member.company_id, issues)
            if lines is None:
                continue
            translated = self._translate(handle, member.company_id,
                                         member.functional_currency, lines,
                                         rates[member.company_id])
            contribution = self._consolidator.consolidate(
                member=member,
                translated=translated,
                include_equity_method=options.include_equity_method_investments,
            )
            issues.extend(contribution.issues)
            contributions.append(contribution)
        self._end_step(
            handle, StepStatus.COMPLETED,
            details=f"{len(contributions)} company trial balance(s) consolidated",
        )

        self._checkpoint(handle, "elimination")
        entries = ()
        if any(rule.is_evaluated for rule in group.elimination_rules):
            self._begin_step(handle, StepType.ELIMINATE)
            outcome = self._evaluator.evaluate(
                rules=group.elimination_rules,
                member_balances={
                    c.company_id: c.lines for c in contributions if c.is_consolidated_in_full
                },
                members={m.company_id: m for m in group.members},
                reporting_currency=group.reporting_currency,
                default_tolerance=self._settings.intercompany_tolerance,
                skip_validation=options.skip_validation,
            )
            for issue in outcome.issues:
                self._record(issue, options, issues)
            entries = outcome.entries
            self._end_step(handle, StepStatus.COMPLETED, details=f"{len(entries)} entry(ies) posted")
        else:
            self._skip_step(handle, StepType.ELIMINATE, "No automatic elimination rules")

        self._checkpoint(handle, "aggregation")
        self._begin_step(handle, StepType.AGGREGATE)
        result = self._aggregator.aggregate(
            contributions=contributions,
            eliminations=entries,
            reporting_currency=group.reporting_currency,
            issues=issues,
        )

        if issues and not options.continue_on_warnings:
            codes = tuple(sorted({i.code.value for i in issues}))
            raise ConsolidationValidationError(
                f"Run produced {len(issues)} warning(s) and continue_on_warnings is off: "
                f"{', '.join(codes)}",
                codes,
            )
        self._end_step(handle, StepStatus.COMPLETED, details=f"{len(result.lines)} account line(s)")
        return result

    # -------------------------------------------------------------------------
    # Pipeline steps
    # -------------------------------------------------------------------------

    def _eligible_members(
        self,
        handle: _RunHandle,
        issues: list[ValidationIssue],
    ) -> list[ConsolidationMember]:
        eligible = []
        for member in sorted(handle.group.active_members, key=lambda m: str(m.company_id)):
            if member.acquisition_date > handle.as_of_date:
                issues.append(ValidationIssue.warning(
                    IssueCode.MEMBER_NOT_YET_ACQUIRED,
                    f"Acquired {member.acquisition_date.isoformat()}, after the as-of date",
                    member.company_id,
                ))
                continue
            uses_equity_method = member.method == ConsolidationMethod.EQUITY or (
                member.method == ConsolidationMethod.VARIABLE_INTEREST_ENTITY
                and not member.is_consolidated_in_full
            )
            if uses_equity_method and not handle.options.include_equity_method_investments:
                issues.append(ValidationIssue.warning(
                    IssueCode.EQUITY_METHOD_EXCLUDED,
                    "Equity-method investment excluded by run options",
                    member.company_id,
                ))
                continue
            eligible.append(member)
        return eligible

    def _resolve_rates(
        self,
        handle: _RunHandle,
        members: list[ConsolidationMember],
        issues: list[ValidationIssue],
    ) -> dict[UUID, TranslationRates]:
        """
        Closing, average and historical rates per company.

        A missing parent rate always fails the run. A missing member rate
        fails it unless skip_validation, which excludes the member.
        """
        group = handle.group
        reporting = group.reporting_currency
        rates: dict[UUID, TranslationRates] = {}

        parent = group.parent
        rates[parent.company_id] = self._rates_for(
            parent.functional_currency, reporting, handle.as_of_date, handle.as_of_date,
        )
        for member in members:
            try:
                rates[member.company_id] = self._rates_for(
                    member.functional_currency, reporting,
                    handle.as_of_date, member.acquisition_date,
                )
            except ExchangeRateNotFoundError as exc:
                self._record(
                    ValidationIssue.error(IssueCode.MISSING_EXCHANGE_RATE, str(exc), member.company_id),
                    handle.options,
                    issues,
                    excludes_member=True,
                )
        return rates

    def _rates_for(
        self,
        functional: str,
        reporting: str,
        as_of: date,
        historical_date: date,
    ) -> TranslationRates:
        if functional == reporting:
            return TranslationRates.identity()

        def fetch(kind: RateKind, on: date):
            return call_with_retry(
                lambda: self._rates.get_rate(functional, reporting, on, kind),
                self._settings.retry,
                "get_rate",
                sleep=self._sleep,
            )

        return TranslationRates(
            closing=fetch(RateKind.SPOT, as_of),
            average=fetch(RateKind.AVERAGE, as_of),
            historical=fetch(RateKind.SPOT, historical_date),
        )

    def _fetch_balance(
        self,
        handle: _RunHandle,
        company_id: UUID,
        issues: list[ValidationIssue],
    ) -> tuple[TrialBalanceLine, ...] | None:
        """Trial balance of one company, or None when it contributes nothing."""
        self._checkpoint(handle, f"member:{company_id}")
        lines = tuple(call_with_retry(
            lambda: self._trial_balances.get_trial_balance(company_id, handle.as_of_date),
            self._settings.retry,
            "get_trial_balance",
            sleep=self._sleep,
        ))
        if not lines:
            issues.append(ValidationIssue.warning(
                IssueCode.EMPTY_TRIAL_BALANCE, "Trial balance has no lines", company_id,
            ))
            return None
        total = sum_amounts(lines)
        if total != 0:
            self._record(
                ValidationIssue.error(
                    IssueCode.UNBALANCED_TRIAL_BALANCE,
                    f"Trial balance is out of balance by {total}",
                    company_id,
                ),
                handle.options,
                issues,
                excludes_member=True,
            )
            return None
        return lines

    def _translate(self, handle, company_id, functional_currency, lines, rates):
        return self._translator.translate(
            company_id=company_id,
            lines=lines,
            functional_currency=functional_currency,
            reporting_currency=handle.group.reporting_currency,
            rates=rates,
        )

    def _record(
        self,
        issue: ValidationIssue,
        options: RunOptions,
        issues: list[ValidationIssue],
        excludes_member: bool = False,
    ) -> None:
        """Keep a warning; raise an error unless skip_validation demotes it."""
        if not issue.is_error:
            issues.append(issue)
            return
        if options.skip_validation:
            logger.warning(
                "validation_error_demoted",
                extra={
                    "code": issue.code.value,
                    "company_id": str(issue.company_id) if issue.company_id else None,
                },
            )
            issues.append(issue.demoted())
            if excludes_member and issue.company_id is not None:
                issues.append(ValidationIssue.warning(
                    IssueCode.MEMBER_EXCLUDED,
                    f"Excluded after {issue.code.value}",
                    issue.company_id,
                ))
            return
        raise ConsolidationValidationError(issue.message, (issue.code.value,))

    def _checkpoint(self, handle: _RunHandle, checkpoint: str) -> None:
        if handle.cancel_event.is_set():
            raise RunCancelledError(str(handle.run_id), checkpoint)
        with session_scope(self._session_factory) as session:
            requested = RunRepository(session).is_cancel_requested(handle.run_id)
        if requested:
            handle.cancel_event.set()
            raise RunCancelledError(str(handle.run_id), checkpoint)

    # -------------------------------------------------------------------------
    # Step tracking
    # -------------------------------------------------------------------------

    def _begin_step(self, handle: _RunHandle, step_type: StepType) -> None:
        """Mark step_type InProgress and persist all steps so far."""
        handle.current_step = step_type
        handle.step_started = time.monotonic()
        handle.steps[step_type] = handle.steps[step_type].start(self._clock.now())
        with session_scope(self._session_factory) as session:
            RunRepository(session).update_steps(handle.run_id, handle.step_snapshot())

    def _end_step(
        self,
        handle: _RunHandle,
        status: StepStatus,
        details: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """
        Close the current step, if any. Held in memory until the next
        _begin_step or the terminal transition writes it.
        """
        step_type = handle.current_step
        if step_type is None:
            return
        elapsed = int((time.monotonic() - handle.step_started) * 1000)
        handle.steps[step_type] = handle.steps[step_type].finish(
            status, self._clock.now(), elapsed, error_message=error_message, details=details,
        )
        handle.current_step = None
        logger.info(
            "run_step_finished",
            extra={"step": step_type.value, "status": status.value, "duration_ms": elapsed},
        )

    def _skip_step(self, handle: _RunHandle, step_type: StepType, details: str) -> None:
        handle.steps[step_type] = handle.steps[step_type].finish(
            StepStatus.SKIPPED, self._clock.now(), None, details=details,
        )

    # -------------------------------------------------------------------------
    # Terminal transitions
    # -------------------------------------------------------------------------

    def _duration_ms(self, handle: _RunHandle) -> int | None:
        if handle.started is None:
            return None
        return int((time.monotonic() - handle.started) * 1000)

    def _finish_completed(self, handle: _RunHandle, result: ConsolidatedResult) -> None:
        duration = self._duration_ms(handle)
        committed = self._commit_terminal(
            handle,
            lambda repo: repo.mark_completed(
                handle.run_id, self._clock.now(), duration or 0, result,
                steps=handle.step_snapshot(),
            ),
            lambda model: self._audit_record(
                handle, RunStatus.COMPLETED, handle.initiated_by, duration,
                content_hash=result.content_hash,
            ),
        )
        if not committed:
            return
        logger.info(
            "run_completed",
            extra={
                "run_id": str(handle.run_id),
                "duration_ms": duration,
                "content_hash": result.content_hash,
                "warning_count": len(result.issues),
            },
        )

    def _finish_failed(self, handle: _RunHandle, message: str, code: str) -> None:
        duration = self._duration_ms(handle)
        committed = self._commit_terminal(
            handle,
            lambda repo: repo.mark_failed(
                handle.run_id, self._clock.now(), duration or 0, message,
                steps=handle.step_snapshot(),
            ),
            lambda model: self._audit_record(
                handle, RunStatus.FAILED, handle.initiated_by, duration,
                error_message=message,
            ),
            error_message=message,
        )
        if not committed:
            return
        logger.error(
            "run_failed",
            extra={
                "run_id": str(handle.run_id),
                "error_code": code,
                "error_message": message,
                "duration_ms": duration,
            },
        )

    def _finish_cancelled(self, handle: _RunHandle, checkpoint: str) -> None:
        duration = self._duration_ms(handle)
        committed = self._commit_terminal(
            handle,
            lambda repo: repo.mark_cancelled(
                handle.run_id, self._clock.now(), duration,
                f"Cancelled at checkpoint {checkpoint}",
                steps=handle.step_snapshot(),
            ),
            lambda model: self._audit_record(
                handle, RunStatus.CANCELLED,
                model.cancel_requested_by_id or handle.initiated_by, duration,
            ),
        )
        if not committed:
            return
        logger.info(
            "run_cancelled",
            extra={"run_id": str(handle.run_id), "checkpoint": checkpoint, "duration_ms": duration},
        )

    def _commit_terminal(
        self,
        handle: _RunHandle,
        transition: Callable[[RunRepository], ConsolidationRunModel],
        record_for: Callable[[ConsolidationRunModel], AuditRecord],
        error_message: str | None = None,
    ) -> bool:
        """
        Commit a terminal transition together with its audit record.

        Each attempt is a fresh transaction; a failed audit write rolls the
        transition back with it and is retried under the retry policy. When
        retries run out the run is marked Failed without an audit record,
        error_message naming the audit failure, and False is returned.
        """

        def attempt() -> None:
            with session_scope(self._session_factory) as session:
                model = transition(RunRepository(session))
                record = record_for(model)
                try:
                    self._audit_sink.emit(record, session)
                except Exception as exc:
                    raise AuditSinkError(str(handle.run_id), str(exc)) from exc

        try:
            call_with_retry(attempt, self._settings.retry, "audit_emit", sleep=self._sleep)
            return True
        except AuditSinkError as exc:
            message = f"Audit record could not be written: {exc.reason}"
            if error_message:
                message = f"{error_message}; {message}"
            duration = self._duration_ms(handle)
            with session_scope(self._session_factory) as session:
                RunRepository(session).mark_failed(
                    handle.run_id, self._clock.now(), duration or 0, message,
                    steps=handle.step_snapshot(),
                )
            logger.error(
                "run_failed",
                extra={
                    "run_id": str(handle.run_id),
                    "error_code": exc.code,
                    "error_message": message,
                    "duration_ms": duration,
                },
            )
            return False

    def _audit_record(
        self,
        handle: _RunHandle,
        status: RunStatus,
        actor_id: UUID,
        duration_ms: int | None,
        error_message: str | None = None,
        content_hash: str | None = None,
    ) -> AuditRecord:
        return AuditRecord(
            run_id=handle.run_id,
            organization_id=handle.organization_id,
            group_id=handle.group.group_id,
            period=handle.period.key,
            status=status.value,
            actor_id=actor_id,
            initiated_by=handle.initiated_by,
            occurred_at=self._clock.now(),
            duration_ms=duration_ms,
            error_message=error_message,
            content_hash=content_hash,
        )

    def _release(self, handle: _RunHandle) -> None:
        self._lock.release(handle.lock_key)
        with self._handles_guard:
            self._handles.pop(handle.run_id, None)
