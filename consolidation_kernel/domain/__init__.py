"""
Pure domain layer.

Value objects and configuration snapshots with NO dependencies on the ORM,
the database or I/O. All domain objects are immutable.
"""

from consolidation_kernel.domain.accounts import ConsolidationAccounts, SyntheticAccount
from consolidation_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from consolidation_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from consolidation_kernel.domain.group import (
    AccountSelector,
    ByAccountCategory,
    ByAccountId,
    ByAccountRange,
    ConsolidationGroup,
    ConsolidationMember,
    ConsolidationMethod,
    EliminationRule,
    EliminationTreatment,
    EliminationType,
    ParentCompany,
    VIEDetermination,
)
from consolidation_kernel.domain.ledger import (
    AccountCategory,
    AccountType,
    IssueCode,
    IssueSeverity,
    TrialBalanceLine,
    ValidationIssue,
)
from consolidation_kernel.domain.values import Currency, ExchangeRate, Money

__all__ = [
    "AccountCategory",
    "AccountSelector",
    "AccountType",
    "ByAccountCategory",
    "ByAccountId",
    "ByAccountRange",
    "Clock",
    "ConsolidationAccounts",
    "ConsolidationGroup",
    "ConsolidationMember",
    "ConsolidationMethod",
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "EliminationRule",
    "EliminationTreatment",
    "EliminationType",
    "ExchangeRate",
    "IssueCode",
    "IssueSeverity",
    "Money",
    "ParentCompany",
    "SyntheticAccount",
    "SystemClock",
    "TrialBalanceLine",
    "VIEDetermination",
    "ValidationIssue",
]
