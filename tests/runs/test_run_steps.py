"""
Per-step progress of a run.

Every run carries one step per pipeline stage (validate, consolidate
members, eliminate, aggregate). Steps are written as they start and
closed with the terminal transition; a step that never ran stays Pending.
"""

import pytest

from consolidation_kernel.db.engine import session_scope
from consolidation_kernel.domain.ledger import AccountType
from consolidation_runs.domain.types import (
    PeriodRef,
    RunStatus,
    StepStatus,
    StepType,
)
from consolidation_runs.services.repository import RunRepository
from tests.fakes import (
    ACTOR_ID,
    AS_OF,
    GROUP_ID,
    ORG_ID,
    SUB_ID,
    GatedTrialBalanceSource,
    InMemoryRateProvider,
    InMemoryTrialBalanceSource,
    scenario_balances,
    scenario_group,
    subsidiary_balance,
    tb_line,
)

PERIOD = PeriodRef(2024, 12)


def _run(orchestrator):
    run_id = orchestrator.initiate_run(ORG_ID, GROUP_ID, PERIOD, AS_OF, ACTOR_ID)
    return orchestrator.wait_for_run(run_id, timeout=10)


def _statuses(run) -> dict[StepType, StepStatus]:
    return {step.step_type: step.status for step in run.steps}


class TestCompletedRun:
    @pytest.fixture
    def run(self, orchestrator, saved_group):
        return _run(orchestrator)

    def test_one_step_per_stage_in_order(self, run):
        assert [step.step_type for step in run.steps] == list(StepType)

    def test_all_steps_completed(self, run):
        assert run.status == RunStatus.COMPLETED
        assert set(_statuses(run).values()) == {StepStatus.COMPLETED}

    def test_steps_are_timed(self, run):
        for step in run.steps:
            assert step.started_at is not None
            assert step.completed_at is not None
            assert step.duration_ms is not None
            assert step.duration_ms >= 0
            assert step.error_message is None

    def test_steps_carry_details(self, run):
        assert run.step(StepType.VALIDATE).details == "1 member(s) eligible"
        assert run.step(StepType.CONSOLIDATE_MEMBERS).details == (
            "2 company trial balance(s) consolidated"
        )
        assert len(run.result.eliminations) == 1
        assert run.step(StepType.ELIMINATE).details == "1 entry(ies) posted"
        assert run.step(StepType.AGGREGATE).details == f"{len(run.result.lines)} account line(s)"

    def test_step_finish_is_logged(self, orchestrator, saved_group, captured_logs):
        _run(orchestrator)
        finished = [r for r in captured_logs() if r["message"] == "run_step_finished"]
        assert [r["step"] for r in finished] == [
            "validate", "consolidate_members", "eliminate", "aggregate",
        ]
        assert all(r["status"] == "completed" for r in finished)


class TestSkippedStep:
    @pytest.fixture
    def group(self):
        return scenario_group(rules=())

    def test_eliminate_skipped_without_rules(self, orchestrator, saved_group):
        run = _run(orchestrator)
        assert run.status == RunStatus.COMPLETED
        eliminate = run.step(StepType.ELIMINATE)
        assert eliminate.status == StepStatus.SKIPPED
        assert eliminate.started_at is None
        assert eliminate.completed_at is not None
        assert eliminate.details == "No automatic elimination rules"
        assert run.step(StepType.AGGREGATE).status == StepStatus.COMPLETED


class TestFailedRun:
    def test_missing_rate_fails_validate(self, make_orchestrator, saved_group):
        run = _run(make_orchestrator(rate_provider=InMemoryRateProvider()))
        assert run.status == RunStatus.FAILED
        validate = run.step(StepType.VALIDATE)
        assert validate.status == StepStatus.FAILED
        assert "EUR/USD" in validate.error_message
        assert validate.completed_at is not None
        assert _statuses(run) == {
            StepType.VALIDATE: StepStatus.FAILED,
            StepType.CONSOLIDATE_MEMBERS: StepStatus.PENDING,
            StepType.ELIMINATE: StepStatus.PENDING,
            StepType.AGGREGATE: StepStatus.PENDING,
        }

    def test_unbalanced_trial_balance_fails_member_step(self, make_orchestrator, saved_group):
        balances = scenario_balances()
        balances[SUB_ID] = subsidiary_balance() + [tb_line("1500", AccountType.ASSET, "10.00")]
        run = _run(make_orchestrator(trial_balance_source=InMemoryTrialBalanceSource(balances)))
        assert run.status == RunStatus.FAILED
        assert _statuses(run) == {
            StepType.VALIDATE: StepStatus.COMPLETED,
            StepType.CONSOLIDATE_MEMBERS: StepStatus.FAILED,
            StepType.ELIMINATE: StepStatus.PENDING,
            StepType.AGGREGATE: StepStatus.PENDING,
        }
        failed = run.step(StepType.CONSOLIDATE_MEMBERS)
        assert failed.error_message == "Trial balance is out of balance by 10.00"
        assert failed.error_message == run.error_message


class TestInProgressRun:
    def test_running_step_visible_while_blocked(self, make_orchestrator, saved_group):
        source = GatedTrialBalanceSource(scenario_balances())
        orchestrator = make_orchestrator(trial_balance_source=source)
        run_id = orchestrator.initiate_run(ORG_ID, GROUP_ID, PERIOD, AS_OF, ACTOR_ID)
        try:
            assert source.entered.wait(timeout=10)
            running = orchestrator.get_run(ORG_ID, run_id)
            assert running.status == RunStatus.IN_PROGRESS
            assert running.step(StepType.VALIDATE).status == StepStatus.COMPLETED
            current = running.step(StepType.CONSOLIDATE_MEMBERS)
            assert current.status == StepStatus.IN_PROGRESS
            assert current.started_at is not None
            assert current.completed_at is None
            assert running.step(StepType.AGGREGATE).status == StepStatus.PENDING
        finally:
            source.gate.set()
        assert orchestrator.wait_for_run(run_id, timeout=10).status == RunStatus.COMPLETED


class TestRepositorySteps:
    def test_steps_survive_reload(self, orchestrator, saved_group, session_factory):
        run = _run(orchestrator)
        with session_scope(session_factory) as s:
            reloaded = RunRepository(s).get_run(ORG_ID, run.run_id)
        assert reloaded.steps == run.steps
