"""
ORM models for consolidation group configuration.

Contract:
    ConsolidationGroupModel, ConsolidationMemberModel and EliminationRuleModel
    persist a group, its members and its elimination rules. Each converts
    to the frozen kernel snapshot types via ``to_domain()``; runs only ever
    see those snapshots.

Architecture: consolidation_runs/models. Imports from consolidation_kernel
    only.

Invariants enforced:
    - Every row carries organization_id for tenant isolation.
    - One member row per (group, company).
    - Account selectors are stored as JSON lists of selector dicts.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from consolidation_kernel.db.base import TrackedBase, UUIDString
from consolidation_kernel.domain.group import (
    ConsolidationMember,
    ConsolidationMethod,
    EliminationRule,
    EliminationTreatment,
    EliminationType,
    VIEDetermination,
    selector_from_dict,
)


class ConsolidationGroupModel(TrackedBase):
    """A parent company and the subsidiaries consolidated with it."""

    __tablename__ = "consolidation_groups"

    __table_args__ = (
        Index("ix_consolidation_groups_org", "organization_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    reporting_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    default_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    parent_company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    parent_functional_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    members: Mapped[list[ConsolidationMemberModel]] = relationship(
        "ConsolidationMemberModel",
        back_populates="group",
        order_by="ConsolidationMemberModel.company_id",
    )
    elimination_rules: Mapped[list[EliminationRuleModel]] = relationship(
        "EliminationRuleModel",
        back_populates="group",
        order_by="EliminationRuleModel.priority",
    )

    def __repr__(self) -> str:
        return f"<ConsolidationGroup {self.name} ({self.reporting_currency})>"


class ConsolidationMemberModel(TrackedBase):
    """
    One subsidiary or investee of a group.

    method may be NULL: the repository then applies the group default, or
    the ownership thresholds when the group has none.
    """

    __tablename__ = "consolidation_members"

    __table_args__ = (
        UniqueConstraint("group_id", "company_id", name="uq_consolidation_member_company"),
        Index("ix_consolidation_members_org", "organization_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    group_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("consolidation_groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    functional_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    ownership_percentage: Mapped[Decimal] = mapped_column(Numeric(9, 6), nullable=False)
    method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    acquisition_date: Mapped[date] = mapped_column(Date, nullable=False)
    goodwill_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    investment_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    vie_is_primary_beneficiary: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    vie_has_controlling_financial_interest: Mapped[bool | None] = mapped_column(
        Boolean, nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    group: Mapped[ConsolidationGroupModel] = relationship(
        "ConsolidationGroupModel", back_populates="members",
    )

    @property
    def vie_determination(self) -> VIEDetermination | None:
        if self.vie_is_primary_beneficiary is None:
            return None
        return VIEDetermination(
            is_primary_beneficiary=self.vie_is_primary_beneficiary,
            has_controlling_financial_interest=bool(self.vie_has_controlling_financial_interest),
        )

    def to_domain(self, method: ConsolidationMethod) -> ConsolidationMember:
        return ConsolidationMember(
            company_id=self.company_id,
            functional_currency=self.functional_currency,
            ownership_percentage=Decimal(self.ownership_percentage),
            method=method,
            acquisition_date=self.acquisition_date,
            goodwill_amount=self.goodwill_amount,
            investment_cost=self.investment_cost,
            vie_determination=self.vie_determination,
            is_active=self.is_active,
        )


class EliminationRuleModel(TrackedBase):
    """Persisted elimination rule; selectors are JSON lists of selector dicts."""

    __tablename__ = "elimination_rules"

    __table_args__ = (
        Index("ix_elimination_rules_group_priority", "group_id", "priority"),
        Index("ix_elimination_rules_org", "organization_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    group_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("consolidation_groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    elimination_type: Mapped[str] = mapped_column(String(50), nullable=False)
    source_selectors: Mapped[list] = mapped_column(JSON, nullable=False)
    target_selectors: Mapped[list | None] = mapped_column(JSON, nullable=True)
    debit_account_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    credit_account_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    treatment: Mapped[str] = mapped_column(
        String(50), default=EliminationTreatment.FULL_REVERSAL.value, nullable=False,
    )
    profit_margin_percentage: Mapped[Decimal | None] = mapped_column(
        Numeric(9, 6), nullable=True,
    )
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    tolerance: Mapped[Decimal | None] = mapped_column(nullable=True)
    is_automatic: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    group: Mapped[ConsolidationGroupModel] = relationship(
        "ConsolidationGroupModel", back_populates="elimination_rules",
    )

    def to_domain(self) -> EliminationRule:
        return EliminationRule(
            rule_id=self.id,
            name=self.name,
            elimination_type=EliminationType(self.elimination_type),
            source_selectors=tuple(selector_from_dict(d) for d in self.source_selectors),
            target_selectors=tuple(selector_from_dict(d) for d in (self.target_selectors or [])),
            debit_account_id=self.debit_account_id,
            credit_account_id=self.credit_account_id,
            treatment=EliminationTreatment(self.treatment),
            profit_margin_percentage=(
                Decimal(self.profit_margin_percentage)
                if self.profit_margin_percentage is not None else None
            ),
            priority=self.priority,
            tolerance=self.tolerance,
            is_automatic=self.is_automatic,
            is_active=self.is_active,
        )

    @classmethod
    def from_domain(
        cls,
        rule: EliminationRule,
        organization_id: UUID,
        group_id: UUID,
        created_by_id: UUID,
    ) -> EliminationRuleModel:
        return cls(
            id=rule.rule_id,
            organization_id=organization_id,
            group_id=group_id,
            name=rule.name,
            elimination_type=rule.elimination_type.value,
            source_selectors=[s.to_dict() for s in rule.source_selectors],
            target_selectors=[s.to_dict() for s in rule.target_selectors],
            debit_account_id=rule.debit_account_id,
            credit_account_id=rule.credit_account_id,
            treatment=rule.treatment.value,
            profit_margin_percentage=rule.profit_margin_percentage,
            priority=rule.priority,
            tolerance=rule.tolerance,
            is_automatic=rule.is_automatic,
            is_active=rule.is_active,
            created_by_id=created_by_id,
        )
