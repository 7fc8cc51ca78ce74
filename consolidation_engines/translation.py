"""
Module: consolidation_engines.translation
Responsibility:
    Translate one company's trial balance from its functional currency into
    the group reporting currency using the current-rate method, and post the
    resulting difference to a single translation adjustment line.

Architecture position:
    Engines -- pure calculation layer, zero I/O. Rates are looked up by the
    run orchestrator and passed in.

Invariants enforced:
    - Assets and liabilities translate at the closing rate, revenue and
      expense at the period-average rate, equity at the historical rate.
    - Every translated amount is rounded once, ROUND_HALF_UP, to the
      reporting currency scale.
    - The translated trial balance sums to exactly zero: rate differences
      and rounding residue land on one translation adjustment line, never
      spread across accounts.
    - Decimal only.

Failure modes:
    - CurrencyMismatchError if a same-currency translation is requested with
      non-identity rates.

Audit relevance:
    The rates applied are returned with the translated balance so the run
    result shows exactly how every figure was converted.

Usage:
    translator = CurrencyTranslator(accounts.translation_adjustment)
    translated = translator.translate(
        company_id=company_id,
        lines=lines,
        functional_currency="EUR",
        reporting_currency="USD",
        rates=TranslationRates.of("1.10", "1.08", "1.05"),
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from consolidation_engines.tracer import traced_engine
from consolidation_kernel.domain.accounts import SyntheticAccount
from consolidation_kernel.domain.ledger import AccountType, TrialBalanceLine, sum_amounts
from consolidation_kernel.domain.values import Currency, ExchangeRate, Money
from consolidation_kernel.exceptions import CurrencyMismatchError
from consolidation_kernel.logging_config import get_logger

logger = get_logger("engines.translation")

ONE = Decimal("1")


@dataclass(frozen=True)
class TranslationRates:
    """The three rates the current-rate method needs for one company."""

    closing: Decimal
    average: Decimal
    historical: Decimal

    @classmethod
    def of(cls, closing, average, historical) -> TranslationRates:
        return cls(Decimal(str(closing)), Decimal(str(average)), Decimal(str(historical)))

    @classmethod
    def identity(cls) -> TranslationRates:
        return cls(ONE, ONE, ONE)

    @property
    def is_identity(self) -> bool:
        return self.closing == ONE and self.average == ONE and self.historical == ONE

    def for_account_type(self, account_type: AccountType) -> Decimal:
        if account_type in (AccountType.ASSET, AccountType.LIABILITY):
            return self.closing
        if account_type in (AccountType.REVENUE, AccountType.EXPENSE):
            return self.average
        return self.historical

    def to_dict(self) -> dict:
        return {
            "closing": str(self.closing),
            "average": str(self.average),
            "historical": str(self.historical),
        }


@dataclass(frozen=True)
class TranslatedTrialBalance:
    """
    One company's trial balance in the reporting currency.

    lines includes the translation adjustment line when the adjustment is
    non-zero; translation_adjustment repeats its amount (debit-positive).
    """

    company_id: UUID
    functional_currency: str
    reporting_currency: str
    rates: TranslationRates
    lines: tuple[TrialBalanceLine, ...]
    translation_adjustment: Decimal

    @property
    def total(self) -> Decimal:
        return sum_amounts(self.lines)


class CurrencyTranslator:
    """
    Current-rate translation with a single adjustment plug.

    Contract:
        Pure function of its inputs. The source trial balance is expected
        to balance; the orchestrator checks that before translating.

    Guarantees:
        - Output lines preserve input order and intercompany tags.
        - Σ output lines == 0 exactly when Σ input lines == 0.

    Non-goals:
        - Temporal (remeasurement) method.
        - Proportional allocation of rounding across accounts.
    """

    def __init__(self, adjustment_account: SyntheticAccount):
        self._adjustment_account = adjustment_account

    @traced_engine(
        "currency_translation",
        "1.0",
        fingerprint_fields=("company_id", "functional_currency", "reporting_currency", "rates"),
    )
    def translate(
        self,
        *,
        company_id: UUID,
        lines: Sequence[TrialBalanceLine],
        functional_currency: str,
        reporting_currency: str,
        rates: TranslationRates,
    ) -> TranslatedTrialBalance:
        source = Currency(functional_currency)
        target = Currency(reporting_currency)
        if source == target and not rates.is_identity:
            raise CurrencyMismatchError(source.code, target.code)

        translated: list[TrialBalanceLine] = []
        for line in lines:
            rate = ExchangeRate(source, target, rates.for_account_type(line.account_type))
            amount = rate.convert(Money(line.amount, source)).round()
            translated.append(line.with_amount(amount.amount))

        residual = -sum_amounts(translated)
        if residual != 0:
            translated.append(self._adjustment_account.line(residual))

        logger.info(
            "trial_balance_translated",
            extra={
                "company_id": str(company_id),
                "functional_currency": source.code,
                "reporting_currency": target.code,
                "line_count": len(lines),
                "translation_adjustment": str(residual),
            },
        )

        return TranslatedTrialBalance(
            company_id=company_id,
            functional_currency=source.code,
            reporting_currency=target.code,
            rates=rates,
            lines=tuple(translated),
            translation_adjustment=residual,
        )
