"""
Cooperative cancellation.

The group has the parent and two subsidiaries, fetched parent first and then
in company-id order. A cancel requested while the first subsidiary is being
fetched is honoured at the boundary before the second one.
"""

import threading
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from consolidation_config.schema import EngineSettings, RetrySettings
from consolidation_kernel.db.engine import session_scope
from consolidation_kernel.domain.ledger import AccountType
from consolidation_kernel.exceptions import AlreadyTerminalError, RunNotFoundError
from consolidation_kernel.models.audit_event import AuditAction
from consolidation_kernel.services.auditor_service import AuditorService
from consolidation_runs.domain.types import PeriodRef, RunStatus, StepStatus, StepType
from consolidation_runs.models.run import ConsolidatedResultModel
from consolidation_runs.services.repository import RunRepository
from tests.fakes import (
    ACTOR_ID,
    AS_OF,
    CANCELLER_ID,
    GROUP_ID,
    ORG_ID,
    OTHER_ORG_ID,
    PARENT_ID,
    SUB_2_ID,
    SUB_ID,
    GatedTrialBalanceSource,
    scenario_balances,
    scenario_group,
    subsidiary,
    tb_line,
)

PERIOD = PeriodRef(2024, 12)


def _second_balance():
    return [
        tb_line("1000", AccountType.ASSET, "5000.00"),
        tb_line("3000", AccountType.EQUITY, "-5000.00"),
    ]


@pytest.fixture
def two_member_group(session_factory, trial_balances):
    group = scenario_group(
        members=(subsidiary(), subsidiary(company_id=SUB_2_ID, ownership="100", currency="USD")),
    )
    with session_scope(session_factory) as s:
        RunRepository(s).save_group(group, ACTOR_ID)
    trial_balances.balances[SUB_2_ID] = _second_balance()
    return group


class _CancelOnFetch:
    """on_fetch hook that cancels the run while ``company_id`` is fetched."""

    def __init__(self, company_id, cancel):
        self.company_id = company_id
        self.cancel = cancel
        self.run_id = None
        self.ready = threading.Event()

    def __call__(self, company_id):
        if company_id == self.company_id:
            assert self.ready.wait(timeout=5)
            self.cancel(self.run_id)

    def start(self, orchestrator):
        self.run_id = orchestrator.initiate_run(ORG_ID, GROUP_ID, PERIOD, AS_OF, ACTOR_ID)
        self.ready.set()
        return orchestrator.wait_for_run(self.run_id, timeout=10)


class TestCancelBetweenMembers:
    @pytest.fixture
    def cancelled_run(self, orchestrator, two_member_group, trial_balances):
        hook = _CancelOnFetch(
            SUB_ID, lambda run_id: orchestrator.cancel_run(ORG_ID, run_id, CANCELLER_ID),
        )
        trial_balances.on_fetch = hook
        return hook.start(orchestrator)

    def test_status_cancelled_without_result(self, cancelled_run):
        assert cancelled_run.status == RunStatus.CANCELLED
        assert cancelled_run.result is None

    def test_second_member_never_fetched(self, cancelled_run, trial_balances):
        assert trial_balances.calls == [PARENT_ID, SUB_ID]

    def test_cancel_checkpoint_recorded(self, cancelled_run):
        assert cancelled_run.error_message == f"Cancelled at checkpoint member:{SUB_2_ID}"
        assert cancelled_run.cancel_requested_by == CANCELLER_ID
        assert cancelled_run.cancel_requested_at is not None
        assert cancelled_run.completed_at is not None

    def test_steps_record_where_it_stopped(self, cancelled_run):
        statuses = {step.step_type: step.status for step in cancelled_run.steps}
        assert statuses == {
            StepType.VALIDATE: StepStatus.COMPLETED,
            StepType.CONSOLIDATE_MEMBERS: StepStatus.CANCELLED,
            StepType.ELIMINATE: StepStatus.PENDING,
            StepType.AGGREGATE: StepStatus.PENDING,
        }
        stopped = cancelled_run.step(StepType.CONSOLIDATE_MEMBERS)
        assert stopped.started_at is not None
        assert stopped.completed_at is not None

    def test_no_result_persisted(self, cancelled_run, session):
        count = session.execute(
            select(func.count()).select_from(ConsolidatedResultModel)
        ).scalar_one()
        assert count == 0

    def test_audit_names_the_canceller(self, cancelled_run, session):
        trace = AuditorService(session).get_trace(cancelled_run.run_id)
        assert [e.action for e in trace.entries] == [AuditAction.RUN_CANCELLED]
        assert trace.entries[0].actor_id == CANCELLER_ID
        assert trace.entries[0].payload["initiated_by"] == str(ACTOR_ID)

    def test_lock_released(self, cancelled_run, orchestrator, trial_balances):
        trial_balances.on_fetch = None
        run_id = orchestrator.initiate_run(ORG_ID, GROUP_ID, PERIOD, AS_OF, ACTOR_ID)
        run = orchestrator.wait_for_run(run_id, timeout=10)
        assert run.status == RunStatus.COMPLETED
        assert run.supersedes_run_id is None

    def test_cancel_is_logged(self, orchestrator, two_member_group, trial_balances, captured_logs):
        hook = _CancelOnFetch(
            SUB_ID, lambda run_id: orchestrator.cancel_run(ORG_ID, run_id, CANCELLER_ID),
        )
        trial_balances.on_fetch = hook
        hook.start(orchestrator)
        events = [r for r in captured_logs() if r["message"] == "run_cancelled"]
        assert len(events) == 1
        assert events[0]["checkpoint"] == f"member:{SUB_2_ID}"


class TestCancelFromAnotherProcess:
    def test_persisted_request_seen_at_next_checkpoint(
        self, orchestrator, two_member_group, trial_balances, session_factory, clock,
    ):
        def request_in_database(run_id):
            with session_scope(session_factory) as s:
                RunRepository(s).request_cancel(ORG_ID, run_id, clock.now(), CANCELLER_ID)

        hook = _CancelOnFetch(SUB_ID, request_in_database)
        trial_balances.on_fetch = hook
        run = hook.start(orchestrator)

        assert run.status == RunStatus.CANCELLED
        assert SUB_2_ID not in trial_balances.calls
        assert run.cancel_requested_by == CANCELLER_ID


class TestCancelBeforeStart:
    def test_queued_run_cancelled_without_running(self, make_orchestrator, saved_group):
        source = GatedTrialBalanceSource(scenario_balances())
        orchestrator = make_orchestrator(
            trial_balance_source=source,
            settings=EngineSettings(max_workers=1, retry=RetrySettings(base_delay_seconds=0.0)),
        )
        blocking = orchestrator.initiate_run(ORG_ID, GROUP_ID, PERIOD, AS_OF, ACTOR_ID)
        assert source.entered.wait(timeout=5)

        queued = orchestrator.initiate_run(ORG_ID, GROUP_ID, PeriodRef(2024, 11), AS_OF, ACTOR_ID)
        orchestrator.cancel_run(ORG_ID, queued, CANCELLER_ID)

        run = orchestrator.get_run(ORG_ID, queued)
        assert run.status == RunStatus.CANCELLED
        assert run.started_at is None
        assert run.error_message == "Cancelled at checkpoint before_start"
        assert {step.status for step in run.steps} == {StepStatus.PENDING}

        source.gate.set()
        assert orchestrator.wait_for_run(blocking, timeout=10).status == RunStatus.COMPLETED
        assert orchestrator.wait_for_run(queued, timeout=10).status == RunStatus.CANCELLED


class TestCancelRejected:
    def test_completed_run(self, orchestrator, saved_group):
        run_id = orchestrator.initiate_run(ORG_ID, GROUP_ID, PERIOD, AS_OF, ACTOR_ID)
        orchestrator.wait_for_run(run_id, timeout=10)
        with pytest.raises(AlreadyTerminalError):
            orchestrator.cancel_run(ORG_ID, run_id, CANCELLER_ID)
        assert orchestrator.get_run(ORG_ID, run_id).result.balance_of("1000") == Decimal("52000.00")

    def test_unknown_run(self, orchestrator, saved_group):
        with pytest.raises(RunNotFoundError):
            orchestrator.cancel_run(ORG_ID, uuid4(), CANCELLER_ID)

    def test_other_organization(self, orchestrator, saved_group):
        run_id = orchestrator.initiate_run(ORG_ID, GROUP_ID, PERIOD, AS_OF, ACTOR_ID)
        orchestrator.wait_for_run(run_id, timeout=10)
        with pytest.raises(RunNotFoundError):
            orchestrator.cancel_run(OTHER_ORG_ID, run_id, CANCELLER_ID)
