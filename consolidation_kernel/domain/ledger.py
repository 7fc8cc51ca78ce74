"""
Ledger -- Trial balance lines and validation issues.

Responsibility:
    The value types that flow between the trial balance source, the
    translation engine and the consolidation engines: an account line with
    its signed balance, and a validation issue raised while consolidating.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Amounts are signed debit-positive Decimals. A balanced trial balance
      sums to zero.
    - Lines are immutable.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from uuid import UUID


class AccountType(str, Enum):
    """Top-level account classification."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"

    @property
    def is_balance_sheet(self) -> bool:
        return self in (AccountType.ASSET, AccountType.LIABILITY, AccountType.EQUITY)


class AccountCategory(str, Enum):
    """Finer classification used by elimination selectors and the Cost method."""

    CURRENT_ASSET = "current_asset"
    NON_CURRENT_ASSET = "non_current_asset"
    INVESTMENT = "investment"
    CURRENT_LIABILITY = "current_liability"
    NON_CURRENT_LIABILITY = "non_current_liability"
    CAPITAL = "capital"
    RETAINED_EARNINGS = "retained_earnings"
    DIVIDENDS = "dividends"
    OTHER_EQUITY = "other_equity"
    OPERATING_REVENUE = "operating_revenue"
    OTHER_REVENUE = "other_revenue"
    COST_OF_SALES = "cost_of_sales"
    OPERATING_EXPENSE = "operating_expense"
    OTHER_EXPENSE = "other_expense"


@dataclass(frozen=True)
class TrialBalanceLine:
    """
    One account balance of one company.

    amount is signed debit-positive in the company's functional currency
    (before translation) or in the reporting currency (after translation).
    intercompany_partner_id names the counterparty company for balances
    that are intercompany.
    """

    account_id: str
    account_name: str
    account_type: AccountType
    amount: Decimal
    category: AccountCategory | None = None
    intercompany_partner_id: UUID | None = None

    def with_amount(self, amount: Decimal) -> TrialBalanceLine:
        return replace(self, amount=amount)

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "account_name": self.account_name,
            "account_type": self.account_type.value,
            "amount": str(self.amount),
            "category": self.category.value if self.category else None,
            "intercompany_partner_id": (
                str(self.intercompany_partner_id) if self.intercompany_partner_id else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> TrialBalanceLine:
        category = data.get("category")
        partner = data.get("intercompany_partner_id")
        return cls(
            account_id=data["account_id"],
            account_name=data["account_name"],
            account_type=AccountType(data["account_type"]),
            amount=Decimal(data["amount"]),
            category=AccountCategory(category) if category else None,
            intercompany_partner_id=UUID(partner) if partner else None,
        )


def sum_amounts(lines) -> Decimal:
    """Sum signed amounts, starting from Decimal zero."""
    return sum((line.amount for line in lines), Decimal("0"))


def net_assets(lines) -> Decimal:
    """Assets less liabilities, as a positive figure for a solvent company."""
    return sum(
        (
            line.amount
            for line in lines
            if line.account_type in (AccountType.ASSET, AccountType.LIABILITY)
        ),
        Decimal("0"),
    )


def net_income(lines) -> Decimal:
    """Revenue less expenses, as a positive figure for a profit."""
    return -sum(
        (
            line.amount
            for line in lines
            if line.account_type in (AccountType.REVENUE, AccountType.EXPENSE)
        ),
        Decimal("0"),
    )


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueCode(str, Enum):
    """Stable codes for validation issues raised during a run."""

    MISSING_EXCHANGE_RATE = "MISSING_EXCHANGE_RATE"
    UNMATCHED_INTERCOMPANY = "UNMATCHED_INTERCOMPANY"
    INTERCOMPANY_ALREADY_ELIMINATED = "INTERCOMPANY_ALREADY_ELIMINATED"
    VIE_WITHOUT_PRIMARY_BENEFICIARY = "VIE_WITHOUT_PRIMARY_BENEFICIARY"
    MEMBER_NOT_YET_ACQUIRED = "MEMBER_NOT_YET_ACQUIRED"
    EQUITY_METHOD_EXCLUDED = "EQUITY_METHOD_EXCLUDED"
    MEMBER_EXCLUDED = "MEMBER_EXCLUDED"
    EMPTY_TRIAL_BALANCE = "EMPTY_TRIAL_BALANCE"
    UNBALANCED_TRIAL_BALANCE = "UNBALANCED_TRIAL_BALANCE"
    MISSING_INVESTMENT_COST = "MISSING_INVESTMENT_COST"
    UNKNOWN_ELIMINATION_ACCOUNT = "UNKNOWN_ELIMINATION_ACCOUNT"


@dataclass(frozen=True)
class ValidationIssue:
    """A problem found while consolidating; errors block, warnings annotate."""

    severity: IssueSeverity
    code: IssueCode
    message: str
    company_id: UUID | None = None

    @classmethod
    def error(cls, code: IssueCode, message: str, company_id: UUID | None = None) -> ValidationIssue:
        return cls(IssueSeverity.ERROR, code, message, company_id)

    @classmethod
    def warning(cls, code: IssueCode, message: str, company_id: UUID | None = None) -> ValidationIssue:
        return cls(IssueSeverity.WARNING, code, message, company_id)

    @property
    def is_error(self) -> bool:
        return self.severity == IssueSeverity.ERROR

    def demoted(self) -> ValidationIssue:
        """Same issue as a warning (used when validation is skipped)."""
        return replace(self, severity=IssueSeverity.WARNING)

    def to_dict(self) -> dict:
        return {
            "severity": self.severity.value,
            "code": self.code.value,
            "message": self.message,
            "company_id": str(self.company_id) if self.company_id else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ValidationIssue:
        company_id = data.get("company_id")
        return cls(
            severity=IssueSeverity(data["severity"]),
            code=IssueCode(data["code"]),
            message=data["message"],
            company_id=UUID(company_id) if company_id else None,
        )
