"""
Unit tests for Currency, Money and ExchangeRate.

Verifies:
- ISO 4217 validation and normalization
- Currency-scale rounding (ROUND_HALF_UP)
- Float constructor prohibition
- Currency mismatch detection
- Exchange rate conversion without implicit rounding
"""

from decimal import Decimal

import pytest

from consolidation_kernel.domain.currency import CurrencyRegistry
from consolidation_kernel.domain.values import Currency, ExchangeRate, Money
from consolidation_kernel.exceptions import CurrencyMismatchError, InvalidCurrencyError


class TestCurrency:
    def test_normalizes_code(self):
        assert Currency(" eur ").code == "EUR"

    def test_rejects_unknown_code(self):
        with pytest.raises(InvalidCurrencyError):
            Currency("XXX")

    def test_decimal_places_from_registry(self):
        assert Currency("USD").decimal_places == 2
        assert Currency("JPY").decimal_places == 0
        assert Currency("KWD").decimal_places == 3

    def test_rounding_tolerance_is_smallest_unit(self):
        assert Currency("USD").rounding_tolerance == Decimal("0.01")
        assert Currency("JPY").rounding_tolerance == Decimal("1")
        assert Currency("BHD").rounding_tolerance == Decimal("0.001")

    def test_quantize_half_up(self):
        assert Currency("USD").quantize(Decimal("10.555")) == Decimal("10.56")
        assert Currency("USD").quantize(Decimal("-10.555")) == Decimal("-10.56")
        assert Currency("JPY").quantize(Decimal("99.5")) == Decimal("100")

    def test_registry_unknown_code_defaults_to_two_places(self):
        assert CurrencyRegistry.get_decimal_places("ZZZ") == 2


class TestMoney:
    def test_of_string(self):
        m = Money.of("100.50", "USD")
        assert m.amount == Decimal("100.50")
        assert m.currency == Currency("USD")

    def test_float_rejected(self):
        with pytest.raises(TypeError):
            Money.of(100.5, "USD")

    def test_invalid_amount_rejected(self):
        with pytest.raises(ValueError):
            Money.of("not a number", "USD")

    def test_addition_same_currency(self):
        assert (Money.of("1.10", "EUR") + Money.of("2.20", "EUR")).amount == Decimal("3.30")

    def test_addition_mixed_currency_raises(self):
        with pytest.raises(CurrencyMismatchError):
            Money.of("1", "EUR") + Money.of("1", "USD")

    def test_multiplication_keeps_full_precision(self):
        m = Money.of("10.00", "USD") * Decimal("0.333")
        assert m.amount == Decimal("3.33000")

    def test_round(self):
        assert Money.of("3.335", "USD").round().amount == Decimal("3.34")

    def test_zero(self):
        assert Money.zero("GBP").is_zero


class TestExchangeRate:
    def test_convert_is_unrounded(self):
        rate = ExchangeRate.of("EUR", "USD", "1.0833")
        converted = rate.convert(Money.of("100", "EUR"))
        assert converted.currency == Currency("USD")
        assert converted.amount == Decimal("108.3300")

    def test_convert_wrong_currency(self):
        rate = ExchangeRate.of("EUR", "USD", "1.10")
        with pytest.raises(CurrencyMismatchError):
            rate.convert(Money.of("1", "GBP"))

    def test_rate_must_be_positive(self):
        with pytest.raises(ValueError):
            ExchangeRate.of("EUR", "USD", "0")
        with pytest.raises(ValueError):
            ExchangeRate.of("EUR", "USD", "-1.1")

    def test_identity(self):
        rate = ExchangeRate.identity("USD")
        assert rate.rate == Decimal("1")
        assert rate.pair == ("USD", "USD")

    def test_inverse(self):
        inverse = ExchangeRate.of("EUR", "USD", "1.25").inverse()
        assert inverse.pair == ("USD", "EUR")
        assert inverse.rate == Decimal("0.8")
