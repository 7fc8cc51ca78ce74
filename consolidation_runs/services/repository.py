"""
RunRepository -- persistence for groups, runs and results.

Contract:
    Loads copy-on-start group snapshots and persists the run lifecycle.
    Every query is scoped by organization_id; a row of another tenant is
    indistinguishable from a missing row.

Architecture: consolidation_runs/services. Imports from
    consolidation_runs.domain, consolidation_runs.models and kernel services.

Invariants enforced:
    - Snapshots are frozen kernel types detached from the session, so later
      edits to the group rows cannot reach an in-flight run.
    - Status changes go through RunStatus.can_transition_to; terminal runs
      raise AlreadyTerminalError.
    - Run seq is allocated via SequenceService.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from consolidation_engines.aggregation import ConsolidatedResult
from consolidation_engines.method_determination import determine_method
from consolidation_kernel.domain.group import (
    ConsolidationGroup,
    ConsolidationMember,
    ConsolidationMethod,
    ParentCompany,
)
from consolidation_kernel.exceptions import (
    AlreadyTerminalError,
    GroupNotFoundError,
    RunNotFoundError,
)
from consolidation_kernel.logging_config import get_logger
from consolidation_kernel.services.sequence_service import SequenceService
from consolidation_runs.domain.types import (
    ConsolidationRun,
    PeriodRef,
    RunOptions,
    RunStatus,
    RunStep,
    initial_steps,
)
from consolidation_runs.models.group import (
    ConsolidationGroupModel,
    ConsolidationMemberModel,
    EliminationRuleModel,
)
from consolidation_runs.models.run import ConsolidatedResultModel, ConsolidationRunModel

logger = get_logger("runs.repository")


class RunRepository:
    """Session-bound data access for the run orchestrator."""

    def __init__(self, session: Session, sequence_service: SequenceService | None = None):
        self._session = session
        self._sequence = sequence_service or SequenceService(session)

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    def load_group_snapshot(self, organization_id: UUID, group_id: UUID) -> ConsolidationGroup:
        """
        Frozen snapshot of a group, validated.

        Raises:
            GroupNotFoundError: Unknown group or another organization's.
            ConfigurationError: From ConsolidationGroup.validate().
        """
        model = self._session.execute(
            select(ConsolidationGroupModel)
            .where(
                ConsolidationGroupModel.id == group_id,
                ConsolidationGroupModel.organization_id == organization_id,
            )
            .options(
                selectinload(ConsolidationGroupModel.members),
                selectinload(ConsolidationGroupModel.elimination_rules),
            )
        ).scalar_one_or_none()
        if model is None:
            raise GroupNotFoundError(str(group_id))

        default_method = (
            ConsolidationMethod(model.default_method) if model.default_method else None
        )
        group = ConsolidationGroup(
            group_id=model.id,
            organization_id=model.organization_id,
            name=model.name,
            reporting_currency=model.reporting_currency,
            default_method=default_method or ConsolidationMethod.FULL,
            parent=ParentCompany(model.parent_company_id, model.parent_functional_currency),
            members=tuple(
                m.to_domain(self._resolve_method(m, default_method)) for m in model.members
            ),
            elimination_rules=tuple(r.to_domain() for r in model.elimination_rules),
            is_active=model.is_active,
        )
        group.validate()
        return group

    @staticmethod
    def _resolve_method(
        member: ConsolidationMemberModel,
        default_method: ConsolidationMethod | None,
    ) -> ConsolidationMethod:
        if member.method:
            return ConsolidationMethod(member.method)
        if default_method is not None:
            return default_method
        return determine_method(member.ownership_percentage, member.vie_determination)

    def save_group(self, group: ConsolidationGroup, created_by_id: UUID) -> ConsolidationGroupModel:
        """Persist a group with its members and rules (used by setup code)."""
        model = ConsolidationGroupModel(
            id=group.group_id,
            organization_id=group.organization_id,
            name=group.name,
            reporting_currency=group.reporting_currency,
            default_method=group.default_method.value,
            parent_company_id=group.parent.company_id,
            parent_functional_currency=group.parent.functional_currency,
            is_active=group.is_active,
            created_by_id=created_by_id,
        )
        self._session.add(model)
        self._session.flush()
        for member in group.members:
            self.save_member(group, member, created_by_id)
        for rule in group.elimination_rules:
            self._session.add(EliminationRuleModel.from_domain(
                rule, group.organization_id, group.group_id, created_by_id,
            ))
        self._session.flush()
        return model

    def save_member(
        self,
        group: ConsolidationGroup,
        member: ConsolidationMember,
        created_by_id: UUID,
    ) -> ConsolidationMemberModel:
        vie = member.vie_determination
        model = ConsolidationMemberModel(
            organization_id=group.organization_id,
            group_id=group.group_id,
            company_id=member.company_id,
            functional_currency=member.functional_currency,
            ownership_percentage=member.ownership_percentage,
            method=member.method.value,
            acquisition_date=member.acquisition_date,
            goodwill_amount=member.goodwill_amount,
            investment_cost=member.investment_cost,
            vie_is_primary_beneficiary=vie.is_primary_beneficiary if vie else None,
            vie_has_controlling_financial_interest=(
                vie.has_controlling_financial_interest if vie else None
            ),
            is_active=member.is_active,
            created_by_id=created_by_id,
        )
        self._session.add(model)
        self._session.flush()
        return model

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    def find_completed_run(
        self,
        organization_id: UUID,
        group_id: UUID,
        period: PeriodRef,
    ) -> ConsolidationRunModel | None:
        """The current (latest) Completed run for a group and period."""
        return self._session.execute(
            select(ConsolidationRunModel)
            .where(
                ConsolidationRunModel.organization_id == organization_id,
                ConsolidationRunModel.group_id == group_id,
                ConsolidationRunModel.fiscal_year == period.fiscal_year,
                ConsolidationRunModel.period_number == period.period_number,
                ConsolidationRunModel.status == RunStatus.COMPLETED.value,
            )
            .order_by(ConsolidationRunModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def list_runs(
        self,
        organization_id: UUID,
        group_id: UUID,
        period: PeriodRef | None = None,
    ) -> list[ConsolidationRun]:
        query = select(ConsolidationRunModel).where(
            ConsolidationRunModel.organization_id == organization_id,
            ConsolidationRunModel.group_id == group_id,
        )
        if period is not None:
            query = query.where(
                ConsolidationRunModel.fiscal_year == period.fiscal_year,
                ConsolidationRunModel.period_number == period.period_number,
            )
        models = self._session.execute(query.order_by(ConsolidationRunModel.seq)).scalars().all()
        return [m.to_dto(include_result=False) for m in models]

    def create_run(
        self,
        organization_id: UUID,
        group_id: UUID,
        period: PeriodRef,
        as_of_date: date,
        options: RunOptions,
        initiated_by: UUID,
        initiated_at: datetime,
        supersedes_run_id: UUID | None = None,
    ) -> ConsolidationRun:
        seq = self._sequence.next_value(SequenceService.CONSOLIDATION_RUN)
        model = ConsolidationRunModel(
            id=uuid4(),
            organization_id=organization_id,
            group_id=group_id,
            fiscal_year=period.fiscal_year,
            period_number=period.period_number,
            as_of_date=as_of_date,
            status=RunStatus.PENDING.value,
            options=options.to_dict(),
            initiated_at=initiated_at,
            supersedes_run_id=supersedes_run_id,
            seq=seq,
            steps=[step.to_dict() for step in initial_steps()],
            created_by_id=initiated_by,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "run_created",
            extra={
                "run_id": str(model.id),
                "group_id": str(group_id),
                "period": period.key,
                "seq": seq,
                "supersedes_run_id": str(supersedes_run_id) if supersedes_run_id else None,
            },
        )
        return model.to_dto(include_result=False)

    def get_run_model(self, run_id: UUID, organization_id: UUID | None = None) -> ConsolidationRunModel:
        """
        Raises:
            RunNotFoundError: Unknown run, or one of another organization.
        """
        query = select(ConsolidationRunModel).where(ConsolidationRunModel.id == run_id)
        if organization_id is not None:
            query = query.where(ConsolidationRunModel.organization_id == organization_id)
        model = self._session.execute(query).scalar_one_or_none()
        if model is None:
            raise RunNotFoundError(str(run_id))
        return model

    def get_run(self, organization_id: UUID, run_id: UUID) -> ConsolidationRun:
        return self.get_run_model(run_id, organization_id).to_dto()

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _transition(self, model: ConsolidationRunModel, target: RunStatus) -> None:
        current = model.run_status
        if not current.can_transition_to(target):
            raise AlreadyTerminalError(str(model.id), current.value)
        model.status = target.value

    def _set_steps(self, model: ConsolidationRunModel, steps: Sequence[RunStep] | None) -> None:
        if steps is not None:
            model.steps = [step.to_dict() for step in steps]

    def mark_in_progress(self, run_id: UUID, started_at: datetime) -> ConsolidationRunModel:
        model = self.get_run_model(run_id)
        self._transition(model, RunStatus.IN_PROGRESS)
        model.started_at = started_at
        self._session.flush()
        return model

    def update_steps(self, run_id: UUID, steps: Sequence[RunStep]) -> ConsolidationRunModel:
        """Record step progress of an InProgress run."""
        model = self.get_run_model(run_id)
        if model.run_status != RunStatus.IN_PROGRESS:
            raise AlreadyTerminalError(str(run_id), model.status)
        self._set_steps(model, steps)
        self._session.flush()
        return model

    def mark_completed(
        self,
        run_id: UUID,
        completed_at: datetime,
        duration_ms: int,
        result: ConsolidatedResult,
        steps: Sequence[RunStep] | None = None,
    ) -> ConsolidationRunModel:
        """Completed transition and result row, in the caller's transaction."""
        model = self.get_run_model(run_id)
        self._transition(model, RunStatus.COMPLETED)
        self._set_steps(model, steps)
        model.completed_at = completed_at
        model.total_duration_ms = duration_ms
        self._session.add(ConsolidatedResultModel(
            organization_id=model.organization_id,
            run_id=model.id,
            reporting_currency=result.reporting_currency,
            content_hash=result.content_hash,
            payload=result.to_dict(),
            created_by_id=model.created_by_id,
        ))
        self._session.flush()
        return model

    def mark_failed(
        self,
        run_id: UUID,
        completed_at: datetime,
        duration_ms: int,
        error_message: str,
        steps: Sequence[RunStep] | None = None,
    ) -> ConsolidationRunModel:
        model = self.get_run_model(run_id)
        self._transition(model, RunStatus.FAILED)
        self._set_steps(model, steps)
        model.completed_at = completed_at
        model.total_duration_ms = duration_ms
        model.error_message = error_message
        self._session.flush()
        return model

    def mark_cancelled(
        self,
        run_id: UUID,
        completed_at: datetime,
        duration_ms: int | None,
        reason: str | None = None,
        steps: Sequence[RunStep] | None = None,
    ) -> ConsolidationRunModel:
        model = self.get_run_model(run_id)
        self._transition(model, RunStatus.CANCELLED)
        self._set_steps(model, steps)
        model.completed_at = completed_at
        model.total_duration_ms = duration_ms
        model.error_message = reason
        self._session.flush()
        return model

    def request_cancel(
        self,
        organization_id: UUID,
        run_id: UUID,
        requested_at: datetime,
        actor_id: UUID,
    ) -> ConsolidationRunModel:
        """
        Record a cancellation request on a Pending or InProgress run.

        Raises:
            RunNotFoundError, AlreadyTerminalError.
        """
        model = self.get_run_model(run_id, organization_id)
        if model.run_status.is_terminal:
            raise AlreadyTerminalError(str(run_id), model.status)
        if model.cancel_requested_at is None:
            model.cancel_requested_at = requested_at
            model.cancel_requested_by_id = actor_id
            self._session.flush()
        return model

    def is_cancel_requested(self, run_id: UUID) -> bool:
        requested = self._session.execute(
            select(ConsolidationRunModel.cancel_requested_at)
            .where(ConsolidationRunModel.id == run_id)
        ).scalar_one_or_none()
        return requested is not None
