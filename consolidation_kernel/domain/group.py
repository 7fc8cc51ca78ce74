"""
Group -- Consolidation group configuration snapshot.

Responsibility:
    Immutable view of a consolidation group as it stood when a run started:
    the parent, its members with ownership and method, and the elimination
    rules to evaluate. Runs work from this snapshot only, so edits made to the
    group while a run is in flight cannot change that run's outcome.

Architecture position:
    Kernel > Domain -- pure, zero I/O. Built by the run repository from ORM
    rows; consumed by the engines.

Invariants enforced (ConsolidationGroup.validate):
    - Members reference distinct companies, none of them the parent.
    - Ownership percentages are in (0, 100].
    - The VIE method requires a VIE determination.
    - Elimination rule priorities are non-negative.

Failure modes:
    - ConfigurationError subclasses from validate().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from consolidation_kernel.domain.ledger import AccountCategory, TrialBalanceLine
from consolidation_kernel.exceptions import (
    DuplicateMemberError,
    GroupHasNoMembersError,
    GroupInactiveError,
    InvalidEliminationRuleError,
    InvalidOwnershipError,
    MissingVIEDeterminationError,
)

HUNDRED = Decimal("100")


class ConsolidationMethod(str, Enum):
    FULL = "full"
    EQUITY = "equity"
    COST = "cost"
    VARIABLE_INTEREST_ENTITY = "variable_interest_entity"


@dataclass(frozen=True)
class VIEDetermination:
    is_primary_beneficiary: bool
    has_controlling_financial_interest: bool = False


@dataclass(frozen=True)
class ParentCompany:
    company_id: UUID
    functional_currency: str


@dataclass(frozen=True)
class ConsolidationMember:
    """
    One subsidiary or investee in a group.

    goodwill_amount and investment_cost are in the group reporting currency.
    """

    company_id: UUID
    functional_currency: str
    ownership_percentage: Decimal
    method: ConsolidationMethod
    acquisition_date: date
    goodwill_amount: Decimal | None = None
    investment_cost: Decimal | None = None
    vie_determination: VIEDetermination | None = None
    is_active: bool = True

    @property
    def nci_percentage(self) -> Decimal:
        return HUNDRED - self.ownership_percentage

    @property
    def ownership_fraction(self) -> Decimal:
        return self.ownership_percentage / HUNDRED

    @property
    def nci_fraction(self) -> Decimal:
        return self.nci_percentage / HUNDRED

    @property
    def is_consolidated_in_full(self) -> bool:
        """Full method, or a VIE of which the group is primary beneficiary."""
        if self.method == ConsolidationMethod.FULL:
            return True
        return (
            self.method == ConsolidationMethod.VARIABLE_INTEREST_ENTITY
            and self.vie_determination is not None
            and self.vie_determination.is_primary_beneficiary
        )


# ---------------------------------------------------------------------------
# Account selectors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountSelector:
    """Base for the ways an elimination rule picks accounts."""

    def matches(self, line: TrialBalanceLine) -> bool:
        raise NotImplementedError

    def to_dict(self) -> dict:
        raise NotImplementedError


@dataclass(frozen=True)
class ByAccountId(AccountSelector):
    account_id: str

    def matches(self, line: TrialBalanceLine) -> bool:
        return line.account_id == self.account_id

    def to_dict(self) -> dict:
        return {"by": "id", "account_id": self.account_id}


@dataclass(frozen=True)
class ByAccountRange(AccountSelector):
    """
    Inclusive account-id range.

    Ids compare as strings, so "20" falls inside "1000".."3000"; charts of
    accounts used with ranges need ids of equal width (zero-padded).
    """

    from_account: str
    to_account: str

    def matches(self, line: TrialBalanceLine) -> bool:
        return self.from_account <= line.account_id <= self.to_account

    def to_dict(self) -> dict:
        return {"by": "range", "from": self.from_account, "to": self.to_account}


@dataclass(frozen=True)
class ByAccountCategory(AccountSelector):
    category: AccountCategory

    def matches(self, line: TrialBalanceLine) -> bool:
        return line.category == self.category

    def to_dict(self) -> dict:
        return {"by": "category", "category": self.category.value}


def selector_from_dict(data: dict) -> AccountSelector:
    kind = data.get("by")
    if kind == "id":
        return ByAccountId(str(data["account_id"]))
    if kind == "range":
        return ByAccountRange(str(data["from"]), str(data["to"]))
    if kind == "category":
        return ByAccountCategory(AccountCategory(data["category"]))
    raise ValueError(f"Unknown account selector: {data!r}")


# ---------------------------------------------------------------------------
# Elimination rules
# ---------------------------------------------------------------------------


class EliminationType(str, Enum):
    RECEIVABLE_PAYABLE = "intercompany_receivable_payable"
    REVENUE_EXPENSE = "intercompany_revenue_expense"
    DIVIDEND = "intercompany_dividend"
    INVESTMENT = "intercompany_investment"
    UNREALIZED_PROFIT_INVENTORY = "unrealized_profit_inventory"
    UNREALIZED_PROFIT_FIXED_ASSETS = "unrealized_profit_fixed_assets"

    @property
    def is_pairwise(self) -> bool:
        return self in (
            EliminationType.RECEIVABLE_PAYABLE,
            EliminationType.REVENUE_EXPENSE,
            EliminationType.DIVIDEND,
        )

    @property
    def is_unrealized_profit(self) -> bool:
        return self in (
            EliminationType.UNREALIZED_PROFIT_INVENTORY,
            EliminationType.UNREALIZED_PROFIT_FIXED_ASSETS,
        )


class EliminationTreatment(str, Enum):
    FULL_REVERSAL = "full_reversal"
    UNREALIZED_PROFIT = "unrealized_profit"


@dataclass(frozen=True)
class EliminationRule:
    """
    Data describing one intercompany elimination.

    source_selectors pick the originating side (e.g. receivables),
    target_selectors the counterpart side (e.g. payables, or the investee
    equity for investment eliminations). debit_account_id and
    credit_account_id are used by unrealized-profit eliminations, which post
    to accounts rather than reversing a pair.
    """

    rule_id: UUID
    name: str
    elimination_type: EliminationType
    source_selectors: tuple[AccountSelector, ...]
    target_selectors: tuple[AccountSelector, ...] = ()
    debit_account_id: str | None = None
    credit_account_id: str | None = None
    treatment: EliminationTreatment = EliminationTreatment.FULL_REVERSAL
    profit_margin_percentage: Decimal | None = None
    priority: int = 100
    tolerance: Decimal | None = None
    is_automatic: bool = True
    is_active: bool = True

    @property
    def is_evaluated(self) -> bool:
        return self.is_active and self.is_automatic

    def matches_source(self, line: TrialBalanceLine) -> bool:
        return any(s.matches(line) for s in self.source_selectors)

    def matches_target(self, line: TrialBalanceLine) -> bool:
        return any(s.matches(line) for s in self.target_selectors)

    def validate(self) -> None:
        rid = str(self.rule_id)
        if self.priority < 0:
            raise InvalidEliminationRuleError(rid, "priority must be >= 0")
        if not self.source_selectors:
            raise InvalidEliminationRuleError(rid, "at least one source selector is required")
        if self.elimination_type.is_pairwise and not self.target_selectors:
            raise InvalidEliminationRuleError(rid, "pairwise eliminations need target selectors")
        if self.elimination_type == EliminationType.INVESTMENT and not self.target_selectors:
            raise InvalidEliminationRuleError(
                rid, "investment eliminations need target selectors for the investee equity"
            )
        if self.elimination_type.is_unrealized_profit:
            if not (self.debit_account_id and self.credit_account_id):
                raise InvalidEliminationRuleError(
                    rid, "unrealized-profit eliminations need debit and credit accounts"
                )
        if self.treatment == EliminationTreatment.UNREALIZED_PROFIT:
            margin = self.profit_margin_percentage
            if margin is None or not (Decimal("0") < margin <= HUNDRED):
                raise InvalidEliminationRuleError(
                    rid, "profit margin must be in (0, 100] for unrealized-profit treatment"
                )
        if self.tolerance is not None and self.tolerance < 0:
            raise InvalidEliminationRuleError(rid, "tolerance must be >= 0")


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConsolidationGroup:
    group_id: UUID
    organization_id: UUID
    name: str
    reporting_currency: str
    default_method: ConsolidationMethod
    parent: ParentCompany
    members: tuple[ConsolidationMember, ...]
    elimination_rules: tuple[EliminationRule, ...] = field(default=())
    is_active: bool = True

    @property
    def active_members(self) -> tuple[ConsolidationMember, ...]:
        return tuple(m for m in self.members if m.is_active)

    def validate(self) -> None:
        """Fail fast on configuration that no run could consolidate."""
        gid = str(self.group_id)
        if not self.is_active:
            raise GroupInactiveError(gid)
        if not self.active_members:
            raise GroupHasNoMembersError(gid)

        seen = {self.parent.company_id}
        for member in self.members:
            if member.company_id in seen:
                raise DuplicateMemberError(gid, str(member.company_id))
            seen.add(member.company_id)
            if not (Decimal("0") < member.ownership_percentage <= HUNDRED):
                raise InvalidOwnershipError(
                    str(member.company_id), str(member.ownership_percentage)
                )
            if (
                member.method == ConsolidationMethod.VARIABLE_INTEREST_ENTITY
                and member.vie_determination is None
            ):
                raise MissingVIEDeterminationError(str(member.company_id))

        for rule in self.elimination_rules:
            rule.validate()
