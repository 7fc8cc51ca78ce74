"""
Accounts -- Synthetic accounts the engines post to.

The translation adjustment, NCI, investment and goodwill lines do not exist
in any member trial balance; the engines create them on accounts named
here. Ids and names are configurable through consolidation_config.
"""

from __future__ import annotations

from dataclasses import dataclass

from consolidation_kernel.domain.ledger import AccountCategory, AccountType, TrialBalanceLine


@dataclass(frozen=True)
class SyntheticAccount:
    """An account the engine posts to that no member trial balance supplies."""

    account_id: str
    name: str
    account_type: AccountType
    category: AccountCategory | None = None

    def line(self, amount) -> TrialBalanceLine:
        return TrialBalanceLine(
            account_id=self.account_id,
            account_name=self.name,
            account_type=self.account_type,
            amount=amount,
            category=self.category,
        )


@dataclass(frozen=True)
class ConsolidationAccounts:
    translation_adjustment: SyntheticAccount = SyntheticAccount(
        "3800", "Cumulative translation adjustment", AccountType.EQUITY,
        AccountCategory.OTHER_EQUITY,
    )
    non_controlling_interest: SyntheticAccount = SyntheticAccount(
        "3900", "Non-controlling interest", AccountType.EQUITY,
        AccountCategory.OTHER_EQUITY,
    )
    nci_equity_offset: SyntheticAccount = SyntheticAccount(
        "3910", "Equity attributable to non-controlling interest", AccountType.EQUITY,
        AccountCategory.OTHER_EQUITY,
    )
    investment_in_subsidiary: SyntheticAccount = SyntheticAccount(
        "1800", "Investment in subsidiary", AccountType.ASSET,
        AccountCategory.INVESTMENT,
    )
    equity_in_earnings: SyntheticAccount = SyntheticAccount(
        "4800", "Equity in earnings of investees", AccountType.REVENUE,
        AccountCategory.OTHER_REVENUE,
    )
    equity_method_reserve: SyntheticAccount = SyntheticAccount(
        "3920", "Equity-method investment reserve", AccountType.EQUITY,
        AccountCategory.OTHER_EQUITY,
    )
    dividend_income: SyntheticAccount = SyntheticAccount(
        "4810", "Dividend income from investees", AccountType.REVENUE,
        AccountCategory.OTHER_REVENUE,
    )
    cost_method_reserve: SyntheticAccount = SyntheticAccount(
        "3930", "Cost-method investment reserve", AccountType.EQUITY,
        AccountCategory.OTHER_EQUITY,
    )
    goodwill: SyntheticAccount = SyntheticAccount(
        "1900", "Goodwill", AccountType.ASSET, AccountCategory.NON_CURRENT_ASSET,
    )
    intercompany_difference: SyntheticAccount = SyntheticAccount(
        "6990", "Intercompany elimination difference", AccountType.EXPENSE,
        AccountCategory.OTHER_EXPENSE,
    )

    def all(self) -> tuple[SyntheticAccount, ...]:
        return (
            self.translation_adjustment,
            self.non_controlling_interest,
            self.nci_equity_offset,
            self.investment_in_subsidiary,
            self.equity_in_earnings,
            self.equity_method_reserve,
            self.dividend_income,
            self.cost_method_reserve,
            self.goodwill,
            self.intercompany_difference,
        )

    def by_id(self, account_id: str) -> SyntheticAccount | None:
        for account in self.all():
            if account.account_id == account_id:
                return account
        return None
