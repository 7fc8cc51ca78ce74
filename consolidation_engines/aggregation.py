"""
Module: consolidation_engines.aggregation
Responsibility:
    Sum member contributions account by account, apply elimination entries,
    add non-controlling interest as a distinct equity component and produce
    the consolidated trial balance with its statement sections.

Architecture position:
    Engines -- pure calculation layer, zero I/O. Last step of a run before
    the result is persisted.

Invariants enforced:
    - Summation happens only in the reporting currency, in Decimal, and
      each consolidated balance is quantized to the currency scale.
    - All translation adjustments arrive on one account and so form one
      consolidated line.
    - Total assets == liabilities + equity + NCI + translation adjustment,
      exactly. Anything else raises UnbalancedConsolidationError.

Failure modes:
    - UnbalancedConsolidationError when the balancing check fails.

Audit relevance:
    The result carries a content hash over its consolidated lines, so two
    runs over identical inputs can be compared by hash alone.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from consolidation_engines.elimination import EliminationEntry
from consolidation_engines.member import MemberContribution, NCIEntry
from consolidation_engines.tracer import traced_engine
from consolidation_kernel.domain.accounts import ConsolidationAccounts
from consolidation_kernel.domain.ledger import (
    AccountCategory,
    AccountType,
    ValidationIssue,
)
from consolidation_kernel.domain.values import Currency
from consolidation_kernel.exceptions import UnbalancedConsolidationError
from consolidation_kernel.logging_config import get_logger
from consolidation_kernel.utils.hashing import hash_consolidated_lines

logger = get_logger("engines.aggregation")

ZERO = Decimal("0")


@dataclass(frozen=True)
class ConsolidatedLine:
    """
    One account of the consolidated trial balance.

    consolidated_balance = aggregated_balance + elimination_amount
    + nci_amount, each debit-positive.
    """

    account_id: str
    account_name: str
    account_type: AccountType
    category: AccountCategory | None
    aggregated_balance: Decimal
    elimination_amount: Decimal
    nci_amount: Decimal
    consolidated_balance: Decimal

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "account_name": self.account_name,
            "account_type": self.account_type.value,
            "category": self.category.value if self.category else None,
            "aggregated_balance": str(self.aggregated_balance),
            "elimination_amount": str(self.elimination_amount),
            "nci_amount": str(self.nci_amount),
            "consolidated_balance": str(self.consolidated_balance),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ConsolidatedLine:
        category = data.get("category")
        return cls(
            account_id=data["account_id"],
            account_name=data["account_name"],
            account_type=AccountType(data["account_type"]),
            category=AccountCategory(category) if category else None,
            aggregated_balance=Decimal(data["aggregated_balance"]),
            elimination_amount=Decimal(data["elimination_amount"]),
            nci_amount=Decimal(data["nci_amount"]),
            consolidated_balance=Decimal(data["consolidated_balance"]),
        )


@dataclass(frozen=True)
class StatementSections:
    """
    Statement totals, shown with natural signs (credits as positive).

    total_equity covers equity accounts other than NCI and the translation
    adjustment, plus current-period net income, which is not yet closed to
    retained earnings in a trial balance.
    """

    total_assets: Decimal
    total_liabilities: Decimal
    total_equity: Decimal
    total_nci: Decimal
    translation_adjustment: Decimal
    total_revenue: Decimal
    total_expenses: Decimal
    net_income: Decimal
    total_debits: Decimal
    total_credits: Decimal

    @property
    def is_balanced(self) -> bool:
        claims = self.total_liabilities + self.total_equity + self.total_nci + self.translation_adjustment
        return self.total_assets == claims and self.total_debits == self.total_credits

    def to_dict(self) -> dict:
        return {
            "total_assets": str(self.total_assets),
            "total_liabilities": str(self.total_liabilities),
            "total_equity": str(self.total_equity),
            "total_nci": str(self.total_nci),
            "translation_adjustment": str(self.translation_adjustment),
            "total_revenue": str(self.total_revenue),
            "total_expenses": str(self.total_expenses),
            "net_income": str(self.net_income),
            "total_debits": str(self.total_debits),
            "total_credits": str(self.total_credits),
        }

    @classmethod
    def from_dict(cls, data: dict) -> StatementSections:
        return cls(**{k: Decimal(v) for k, v in data.items()})


@dataclass(frozen=True)
class ConsolidatedResult:
    reporting_currency: str
    lines: tuple[ConsolidatedLine, ...]
    contributions: tuple[MemberContribution, ...]
    eliminations: tuple[EliminationEntry, ...]
    nci_entries: tuple[NCIEntry, ...]
    sections: StatementSections
    content_hash: str
    issues: tuple[ValidationIssue, ...] = field(default=())

    @property
    def warnings(self) -> tuple[ValidationIssue, ...]:
        return tuple(i for i in self.issues if not i.is_error)

    def line_for(self, account_id: str) -> ConsolidatedLine | None:
        for line in self.lines:
            if line.account_id == account_id:
                return line
        return None

    def balance_of(self, account_id: str) -> Decimal:
        line = self.line_for(account_id)
        return line.consolidated_balance if line else ZERO

    def with_issues(self, issues: Sequence[ValidationIssue]) -> ConsolidatedResult:
        return ConsolidatedResult(
            reporting_currency=self.reporting_currency,
            lines=self.lines,
            contributions=self.contributions,
            eliminations=self.eliminations,
            nci_entries=self.nci_entries,
            sections=self.sections,
            content_hash=self.content_hash,
            issues=tuple(issues),
        )

    def to_dict(self) -> dict:
        return {
            "reporting_currency": self.reporting_currency,
            "lines": [line.to_dict() for line in self.lines],
            "contributions": [c.to_dict() for c in self.contributions],
            "eliminations": [e.to_dict() for e in self.eliminations],
            "nci_entries": [n.to_dict() for n in self.nci_entries],
            "sections": self.sections.to_dict(),
            "content_hash": self.content_hash,
            "issues": [i.to_dict() for i in self.issues],
        }

    @classmethod
    def from_dict(cls, data: dict) -> ConsolidatedResult:
        return cls(
            reporting_currency=data["reporting_currency"],
            lines=tuple(ConsolidatedLine.from_dict(d) for d in data["lines"]),
            contributions=tuple(MemberContribution.from_dict(d) for d in data["contributions"]),
            eliminations=tuple(EliminationEntry.from_dict(d) for d in data["eliminations"]),
            nci_entries=tuple(NCIEntry.from_dict(d) for d in data["nci_entries"]),
            sections=StatementSections.from_dict(data["sections"]),
            content_hash=data["content_hash"],
            issues=tuple(ValidationIssue.from_dict(d) for d in data["issues"]),
        )


@dataclass
class _Accumulator:
    account_name: str
    account_type: AccountType
    category: AccountCategory | None
    aggregated: Decimal = ZERO
    eliminated: Decimal = ZERO
    nci: Decimal = ZERO


class ConsolidationAggregator:
    """
    Account-by-account summation with eliminations and NCI.

    Contract:
        Contributions and eliminations are already in the reporting
        currency. The aggregator neither translates nor re-evaluates rules.

    Guarantees:
        - Lines are ordered by account id; zero lines with no activity are
          dropped.
        - The content hash depends only on account ids and balances.
    """

    def __init__(self, accounts: ConsolidationAccounts | None = None):
        self._accounts = accounts or ConsolidationAccounts()

    @traced_engine("consolidation_aggregation", "1.0", fingerprint_fields=("reporting_currency",))
    def aggregate(
        self,
        *,
        contributions: Sequence[MemberContribution],
        eliminations: Sequence[EliminationEntry],
        reporting_currency: str,
        issues: Sequence[ValidationIssue] = (),
    ) -> ConsolidatedResult:
        currency = Currency(reporting_currency)
        accounts: dict[str, _Accumulator] = {}

        def bucket(line) -> _Accumulator:
            acc = accounts.get(line.account_id)
            if acc is None:
                acc = _Accumulator(line.account_name, line.account_type, line.category)
                accounts[line.account_id] = acc
            return acc

        nci_entries = []
        for contribution in contributions:
            for line in contribution.lines:
                bucket(line).aggregated += line.amount
            if contribution.nci_entry is not None:
                nci_entries.append(contribution.nci_entry)
                for line in contribution.nci_entry.lines:
                    bucket(line).nci += line.amount
        for entry in eliminations:
            for line in entry.lines:
                bucket(line).eliminated += line.amount

        lines = []
        for account_id in sorted(accounts):
            acc = accounts[account_id]
            if acc.aggregated == 0 and acc.eliminated == 0 and acc.nci == 0:
                continue
            lines.append(ConsolidatedLine(
                account_id=account_id,
                account_name=acc.account_name,
                account_type=acc.account_type,
                category=acc.category,
                aggregated_balance=currency.quantize(acc.aggregated),
                elimination_amount=currency.quantize(acc.eliminated),
                nci_amount=currency.quantize(acc.nci),
                consolidated_balance=currency.quantize(acc.aggregated + acc.eliminated + acc.nci),
            ))

        sections = self._sections(lines)
        if not sections.is_balanced:
            logger.error(
                "consolidation_unbalanced",
                extra={
                    "total_assets": str(sections.total_assets),
                    "total_debits": str(sections.total_debits),
                    "total_credits": str(sections.total_credits),
                },
            )
            raise UnbalancedConsolidationError(
                str(sections.total_assets),
                str(
                    sections.total_liabilities + sections.total_equity
                    + sections.total_nci + sections.translation_adjustment
                ),
            )

        content_hash = hash_consolidated_lines(
            [{"account_id": line.account_id, "balance": line.consolidated_balance} for line in lines]
        )
        logger.info(
            "consolidation_aggregated",
            extra={
                "reporting_currency": currency.code,
                "line_count": len(lines),
                "contribution_count": len(contributions),
                "elimination_count": len(eliminations),
                "total_assets": str(sections.total_assets),
                "content_hash": content_hash,
            },
        )
        return ConsolidatedResult(
            reporting_currency=currency.code,
            lines=tuple(lines),
            contributions=tuple(contributions),
            eliminations=tuple(eliminations),
            nci_entries=tuple(nci_entries),
            sections=sections,
            content_hash=content_hash,
            issues=tuple(issues),
        )

    def _sections(self, lines: Sequence[ConsolidatedLine]) -> StatementSections:
        nci_ids = {self._accounts.non_controlling_interest.account_id}
        cta_id = self._accounts.translation_adjustment.account_id

        def total(predicate) -> Decimal:
            return sum((line.consolidated_balance for line in lines if predicate(line)), ZERO)

        assets = total(lambda line: line.account_type == AccountType.ASSET)
        liabilities = -total(lambda line: line.account_type == AccountType.LIABILITY)
        revenue = -total(lambda line: line.account_type == AccountType.REVENUE)
        expenses = total(lambda line: line.account_type == AccountType.EXPENSE)
        net_income = revenue - expenses
        nci = -total(lambda line: line.account_id in nci_ids)
        cta = -total(lambda line: line.account_id == cta_id)
        equity = -total(
            lambda line: line.account_type == AccountType.EQUITY
            and line.account_id not in nci_ids
            and line.account_id != cta_id
        ) + net_income

        return StatementSections(
            total_assets=assets,
            total_liabilities=liabilities,
            total_equity=equity,
            total_nci=nci,
            translation_adjustment=cta,
            total_revenue=revenue,
            total_expenses=expenses,
            net_income=net_income,
            total_debits=total(lambda line: line.consolidated_balance > 0),
            total_credits=-total(lambda line: line.consolidated_balance < 0),
        )
