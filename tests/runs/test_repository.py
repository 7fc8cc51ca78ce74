"""
Tests for RunRepository: group snapshots, run rows and transitions.
"""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from consolidation_kernel.domain.group import ConsolidationMethod, VIEDetermination
from consolidation_kernel.exceptions import (
    AlreadyTerminalError,
    GroupHasNoMembersError,
    GroupInactiveError,
    GroupNotFoundError,
    RunNotFoundError,
)
from consolidation_runs.domain.types import (
    PeriodRef,
    RunOptions,
    RunStatus,
    StepStatus,
    StepType,
)
from consolidation_runs.services.repository import RunRepository
from tests.fakes import (
    ACTOR_ID,
    AS_OF,
    CANCELLER_ID,
    GROUP_ID,
    ORG_ID,
    OTHER_ORG_ID,
    scenario_group,
    subsidiary,
)

PERIOD = PeriodRef(2024, 12)
NOW = datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc)


def _create(repo, period=PERIOD, supersedes=None):
    return repo.create_run(
        organization_id=ORG_ID,
        group_id=GROUP_ID,
        period=period,
        as_of_date=AS_OF,
        options=RunOptions(skip_validation=True),
        initiated_by=ACTOR_ID,
        initiated_at=NOW,
        supersedes_run_id=supersedes,
    )


class TestGroupSnapshot:
    def test_round_trip(self, session, group):
        repo = RunRepository(session)
        repo.save_group(group, ACTOR_ID)
        loaded = repo.load_group_snapshot(ORG_ID, GROUP_ID)
        assert loaded.parent == group.parent
        assert loaded.reporting_currency == "USD"
        assert loaded.members == group.members
        assert loaded.elimination_rules == group.elimination_rules

    def test_other_organization_cannot_load(self, session, group):
        repo = RunRepository(session)
        repo.save_group(group, ACTOR_ID)
        with pytest.raises(GroupNotFoundError):
            repo.load_group_snapshot(OTHER_ORG_ID, GROUP_ID)

    def test_unknown_group(self, session):
        with pytest.raises(GroupNotFoundError):
            RunRepository(session).load_group_snapshot(ORG_ID, uuid4())

    def test_inactive_group_rejected(self, session):
        repo = RunRepository(session)
        repo.save_group(replace(scenario_group(), is_active=False), ACTOR_ID)
        with pytest.raises(GroupInactiveError):
            repo.load_group_snapshot(ORG_ID, GROUP_ID)

    def test_group_without_active_members_rejected(self, session):
        repo = RunRepository(session)
        repo.save_group(scenario_group(members=(subsidiary(is_active=False),)), ACTOR_ID)
        with pytest.raises(GroupHasNoMembersError):
            repo.load_group_snapshot(ORG_ID, GROUP_ID)

    def test_vie_determination_persisted(self, session):
        member = subsidiary(
            ownership="15",
            method=ConsolidationMethod.VARIABLE_INTEREST_ENTITY,
            vie_determination=VIEDetermination(is_primary_beneficiary=True),
        )
        repo = RunRepository(session)
        repo.save_group(scenario_group(members=(member,)), ACTOR_ID)
        (loaded,) = repo.load_group_snapshot(ORG_ID, GROUP_ID).members
        assert loaded.vie_determination.is_primary_beneficiary
        assert loaded.ownership_percentage == Decimal("15")


class TestRuns:
    def test_create_pending(self, session, saved_group):
        run = _create(RunRepository(session))
        assert run.status == RunStatus.PENDING
        assert run.options == RunOptions(skip_validation=True)
        assert run.seq == 1
        assert run.result is None
        assert [s.step_type for s in run.steps] == list(StepType)
        assert {s.status for s in run.steps} == {StepStatus.PENDING}

    def test_sequence_increases(self, session, saved_group):
        repo = RunRepository(session)
        assert [_create(repo).seq, _create(repo).seq] == [1, 2]

    def test_get_scoped_to_organization(self, session, saved_group):
        repo = RunRepository(session)
        run = _create(repo)
        assert repo.get_run(ORG_ID, run.run_id).run_id == run.run_id
        with pytest.raises(RunNotFoundError):
            repo.get_run(OTHER_ORG_ID, run.run_id)

    def test_find_completed_ignores_other_states(self, session, saved_group):
        repo = RunRepository(session)
        failed = _create(repo)
        repo.mark_in_progress(failed.run_id, NOW)
        repo.mark_failed(failed.run_id, NOW, 5, "boom")
        assert repo.find_completed_run(ORG_ID, GROUP_ID, PERIOD) is None

    def test_list_runs_by_period(self, session, saved_group):
        repo = RunRepository(session)
        _create(repo)
        _create(repo, period=PeriodRef(2024, 11))
        assert len(repo.list_runs(ORG_ID, GROUP_ID)) == 2
        assert [r.period for r in repo.list_runs(ORG_ID, GROUP_ID, PERIOD)] == [PERIOD]


class TestTransitions:
    def test_started_only_once(self, session, saved_group):
        repo = RunRepository(session)
        run = _create(repo)
        repo.mark_in_progress(run.run_id, NOW)
        with pytest.raises(AlreadyTerminalError):
            repo.mark_in_progress(run.run_id, NOW)

    def test_failed_is_terminal(self, session, saved_group):
        repo = RunRepository(session)
        run = _create(repo)
        repo.mark_failed(run.run_id, NOW, 1, "first")
        with pytest.raises(AlreadyTerminalError):
            repo.mark_cancelled(run.run_id, NOW, 1)

    def test_cancel_request_recorded_once(self, session, saved_group):
        repo = RunRepository(session)
        run = _create(repo)
        repo.request_cancel(ORG_ID, run.run_id, NOW, CANCELLER_ID)
        repo.request_cancel(ORG_ID, run.run_id, NOW, ACTOR_ID)
        model = repo.get_run_model(run.run_id)
        assert model.cancel_requested_by_id == CANCELLER_ID
        assert repo.is_cancel_requested(run.run_id)

    def test_cancel_request_on_terminal_run(self, session, saved_group):
        repo = RunRepository(session)
        run = _create(repo)
        repo.mark_cancelled(run.run_id, NOW, None, "before start")
        with pytest.raises(AlreadyTerminalError):
            repo.request_cancel(ORG_ID, run.run_id, NOW, CANCELLER_ID)

    def test_no_cancel_request(self, session, saved_group):
        repo = RunRepository(session)
        assert not repo.is_cancel_requested(_create(repo).run_id)


class TestSteps:
    def test_update_steps_of_running_run(self, session, saved_group):
        repo = RunRepository(session)
        run = _create(repo)
        repo.mark_in_progress(run.run_id, NOW)
        started = run.step(StepType.VALIDATE).start(NOW)
        repo.update_steps(run.run_id, (started,) + run.steps[1:])
        stored = repo.get_run(ORG_ID, run.run_id)
        assert stored.step(StepType.VALIDATE).status == StepStatus.IN_PROGRESS
        assert stored.step(StepType.VALIDATE).started_at == NOW
        assert stored.step(StepType.ELIMINATE).status == StepStatus.PENDING

    def test_update_steps_requires_running_run(self, session, saved_group):
        repo = RunRepository(session)
        run = _create(repo)
        with pytest.raises(AlreadyTerminalError):
            repo.update_steps(run.run_id, run.steps)

    def test_terminal_transition_writes_steps(self, session, saved_group):
        repo = RunRepository(session)
        run = _create(repo)
        repo.mark_in_progress(run.run_id, NOW)
        failed = run.step(StepType.VALIDATE).start(NOW).finish(
            StepStatus.FAILED, NOW, 12, error_message="boom",
        )
        repo.mark_failed(run.run_id, NOW, 12, "boom", steps=(failed,) + run.steps[1:])
        stored = repo.get_run(ORG_ID, run.run_id)
        assert stored.step(StepType.VALIDATE) == failed
        assert stored.step(StepType.AGGREGATE).status == StepStatus.PENDING

    def test_terminal_transition_keeps_steps_when_omitted(self, session, saved_group):
        repo = RunRepository(session)
        run = _create(repo)
        repo.mark_cancelled(run.run_id, NOW, None, "before start")
        assert repo.get_run(ORG_ID, run.run_id).steps == run.steps
