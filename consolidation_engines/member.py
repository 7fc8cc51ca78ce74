"""
Module: consolidation_engines.member
Responsibility:
    Turn one member's translated trial balance into its contribution to the
    consolidated trial balance, according to the member's consolidation
    method (Full, Equity, Cost or VIE), and compute its non-controlling
    interest.

Architecture position:
    Engines -- pure calculation layer, zero I/O. Input is a
    TranslatedTrialBalance already in the group reporting currency.

Invariants enforced:
    - Every contribution sums to zero, so the consolidated trial balance
      can only balance.
    - Equity and Cost members never produce an NCI entry.
    - A Full member owned 100% produces no NCI entry.
    - NCI amounts are rounded once, ROUND_HALF_UP, to the reporting scale.

Failure modes:
    - None raised. Data problems (VIE without primary beneficiary, Cost
      member without investment cost) are returned as ValidationIssues.

Audit relevance:
    The contribution records the requested method, the method applied and
    the ownership used, so a result explains every figure it shows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from consolidation_engines.tracer import traced_engine
from consolidation_engines.translation import TranslatedTrialBalance
from consolidation_kernel.domain.accounts import ConsolidationAccounts
from consolidation_kernel.domain.group import (
    HUNDRED,
    ConsolidationMember,
    ConsolidationMethod,
    ParentCompany,
)
from consolidation_kernel.domain.ledger import (
    AccountCategory,
    IssueCode,
    TrialBalanceLine,
    ValidationIssue,
    net_assets,
    net_income,
    sum_amounts,
)
from consolidation_kernel.domain.values import Currency
from consolidation_kernel.logging_config import get_logger

logger = get_logger("engines.member")

ZERO = Decimal("0")


@dataclass(frozen=True)
class NCIEntry:
    """
    The non-controlling interest in one fully consolidated member.

    amount is the NCI share of translated net assets. lines carry it as a
    credit to the NCI account and a debit to the NCI equity offset, so the
    entry reclassifies equity and sums to zero.
    """

    company_id: UUID
    nci_percentage: Decimal
    net_assets: Decimal
    net_income: Decimal
    amount: Decimal
    nci_share_of_net_income: Decimal
    lines: tuple[TrialBalanceLine, ...]

    def to_dict(self) -> dict:
        return {
            "company_id": str(self.company_id),
            "nci_percentage": str(self.nci_percentage),
            "net_assets": str(self.net_assets),
            "net_income": str(self.net_income),
            "amount": str(self.amount),
            "nci_share_of_net_income": str(self.nci_share_of_net_income),
            "lines": [line.to_dict() for line in self.lines],
        }

    @classmethod
    def from_dict(cls, data: dict) -> NCIEntry:
        return cls(
            company_id=UUID(data["company_id"]),
            nci_percentage=Decimal(data["nci_percentage"]),
            net_assets=Decimal(data["net_assets"]),
            net_income=Decimal(data["net_income"]),
            amount=Decimal(data["amount"]),
            nci_share_of_net_income=Decimal(data["nci_share_of_net_income"]),
            lines=tuple(TrialBalanceLine.from_dict(d) for d in data["lines"]),
        )


@dataclass(frozen=True)
class MemberContribution:
    """What one company adds to the consolidated trial balance."""

    company_id: UUID
    method: ConsolidationMethod
    requested_method: ConsolidationMethod
    ownership_percentage: Decimal
    lines: tuple[TrialBalanceLine, ...]
    nci_entry: NCIEntry | None = None
    translation_adjustment: Decimal = ZERO
    issues: tuple[ValidationIssue, ...] = field(default=())

    @property
    def nci_amount(self) -> Decimal:
        return self.nci_entry.amount if self.nci_entry else ZERO

    @property
    def is_consolidated_in_full(self) -> bool:
        return self.method == ConsolidationMethod.FULL or (
            self.method == ConsolidationMethod.VARIABLE_INTEREST_ENTITY
        )

    def to_dict(self) -> dict:
        return {
            "company_id": str(self.company_id),
            "method": self.method.value,
            "requested_method": self.requested_method.value,
            "ownership_percentage": str(self.ownership_percentage),
            "lines": [line.to_dict() for line in self.lines],
            "nci_entry": self.nci_entry.to_dict() if self.nci_entry else None,
            "translation_adjustment": str(self.translation_adjustment),
            "issues": [issue.to_dict() for issue in self.issues],
        }

    @classmethod
    def from_dict(cls, data: dict) -> MemberContribution:
        nci = data.get("nci_entry")
        return cls(
            company_id=UUID(data["company_id"]),
            method=ConsolidationMethod(data["method"]),
            requested_method=ConsolidationMethod(data["requested_method"]),
            ownership_percentage=Decimal(data["ownership_percentage"]),
            lines=tuple(TrialBalanceLine.from_dict(d) for d in data["lines"]),
            nci_entry=NCIEntry.from_dict(nci) if nci else None,
            translation_adjustment=Decimal(data["translation_adjustment"]),
            issues=tuple(ValidationIssue.from_dict(d) for d in data["issues"]),
        )


class MemberConsolidator:
    """
    Method dispatch for one member.

    Contract:
        consolidate() is a pure function of the member snapshot and its
        translated trial balance.

    Guarantees:
        - Full and VIE-primary-beneficiary members contribute every line.
        - Equity members contribute three lines: investment, equity in
          earnings and the equity-method reserve.
        - Cost members contribute the investment at cost, dividend income
          and the cost-method reserve.

    Non-goals:
        - Pro-ration for acquisitions during the period.
        - Step acquisitions and changes in ownership.
    """

    def __init__(self, accounts: ConsolidationAccounts | None = None):
        self._accounts = accounts or ConsolidationAccounts()

    def consolidate_parent(
        self,
        parent: ParentCompany,
        translated: TranslatedTrialBalance,
    ) -> MemberContribution:
        """The parent is consolidated in full at 100%."""
        return MemberContribution(
            company_id=parent.company_id,
            method=ConsolidationMethod.FULL,
            requested_method=ConsolidationMethod.FULL,
            ownership_percentage=HUNDRED,
            lines=translated.lines,
            translation_adjustment=translated.translation_adjustment,
        )

    @traced_engine(
        "member_consolidation",
        "1.0",
        fingerprint_fields=("member", "include_equity_method"),
    )
    def consolidate(
        self,
        *,
        member: ConsolidationMember,
        translated: TranslatedTrialBalance,
        include_equity_method: bool = True,
    ) -> MemberContribution:
        issues: list[ValidationIssue] = []
        method = member.method

        if method == ConsolidationMethod.VARIABLE_INTEREST_ENTITY and not member.is_consolidated_in_full:
            issues.append(ValidationIssue.warning(
                IssueCode.VIE_WITHOUT_PRIMARY_BENEFICIARY,
                "Group is not the primary beneficiary of this VIE; applying the equity method",
                member.company_id,
            ))
            method = ConsolidationMethod.EQUITY

        if method == ConsolidationMethod.EQUITY and not include_equity_method:
            issues.append(ValidationIssue.warning(
                IssueCode.EQUITY_METHOD_EXCLUDED,
                "Equity-method investment excluded by run options",
                member.company_id,
            ))
            contribution = self._build(member, method, (), issues=issues)
        elif method in (ConsolidationMethod.FULL, ConsolidationMethod.VARIABLE_INTEREST_ENTITY):
            contribution = self._consolidate_full(member, method, translated, issues)
        elif method == ConsolidationMethod.EQUITY:
            contribution = self._consolidate_equity(member, translated, issues)
        else:
            contribution = self._consolidate_cost(member, translated, issues)

        logger.info(
            "member_consolidated",
            extra={
                "company_id": str(member.company_id),
                "requested_method": member.method.value,
                "method": contribution.method.value,
                "ownership_percentage": str(member.ownership_percentage),
                "line_count": len(contribution.lines),
                "nci_amount": str(contribution.nci_amount),
                "issue_count": len(contribution.issues),
            },
        )
        return contribution

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    def _consolidate_full(
        self,
        member: ConsolidationMember,
        method: ConsolidationMethod,
        translated: TranslatedTrialBalance,
        issues: list[ValidationIssue],
    ) -> MemberContribution:
        nci_entry = None
        if member.nci_percentage > 0:
            currency = Currency(translated.reporting_currency)
            assets = net_assets(translated.lines)
            income = net_income(translated.lines)
            amount = currency.quantize(assets * member.nci_fraction)
            nci_entry = NCIEntry(
                company_id=member.company_id,
                nci_percentage=member.nci_percentage,
                net_assets=assets,
                net_income=income,
                amount=amount,
                nci_share_of_net_income=currency.quantize(income * member.nci_fraction),
                lines=(
                    self._accounts.nci_equity_offset.line(amount),
                    self._accounts.non_controlling_interest.line(-amount),
                ),
            )
        return self._build(
            member,
            method,
            translated.lines,
            nci_entry=nci_entry,
            translation_adjustment=translated.translation_adjustment,
            issues=issues,
        )

    def _consolidate_equity(
        self,
        member: ConsolidationMember,
        translated: TranslatedTrialBalance,
        issues: list[ValidationIssue],
    ) -> MemberContribution:
        currency = Currency(translated.reporting_currency)
        share_of_net_assets = currency.quantize(net_assets(translated.lines) * member.ownership_fraction)
        share_of_income = currency.quantize(net_income(translated.lines) * member.ownership_fraction)
        investment = share_of_net_assets + (member.goodwill_amount or ZERO)

        lines = [
            self._accounts.investment_in_subsidiary.line(investment),
            self._accounts.equity_in_earnings.line(-share_of_income),
            self._accounts.equity_method_reserve.line(-(investment - share_of_income)),
        ]
        return self._build(member, ConsolidationMethod.EQUITY, _non_zero(lines), issues=issues)

    def _consolidate_cost(
        self,
        member: ConsolidationMember,
        translated: TranslatedTrialBalance,
        issues: list[ValidationIssue],
    ) -> MemberContribution:
        currency = Currency(translated.reporting_currency)
        cost = member.investment_cost
        if cost is None:
            issues.append(ValidationIssue.warning(
                IssueCode.MISSING_INVESTMENT_COST,
                "Cost-method member has no investment cost; carrying the investment at zero",
                member.company_id,
            ))
            cost = ZERO

        declared = sum_amounts(
            line for line in translated.lines if line.category == AccountCategory.DIVIDENDS
        )
        received = currency.quantize(declared * member.ownership_fraction)

        lines = [
            self._accounts.investment_in_subsidiary.line(cost),
            self._accounts.dividend_income.line(-received),
            self._accounts.cost_method_reserve.line(received - cost),
        ]
        return self._build(member, ConsolidationMethod.COST, _non_zero(lines), issues=issues)

    def _build(
        self,
        member: ConsolidationMember,
        method: ConsolidationMethod,
        lines,
        *,
        nci_entry: NCIEntry | None = None,
        translation_adjustment: Decimal = ZERO,
        issues: list[ValidationIssue],
    ) -> MemberContribution:
        return MemberContribution(
            company_id=member.company_id,
            method=method,
            requested_method=member.method,
            ownership_percentage=member.ownership_percentage,
            lines=tuple(lines),
            nci_entry=nci_entry,
            translation_adjustment=translation_adjustment,
            issues=tuple(issues),
        )


def _non_zero(lines: list[TrialBalanceLine]) -> list[TrialBalanceLine]:
    return [line for line in lines if line.amount != 0]
