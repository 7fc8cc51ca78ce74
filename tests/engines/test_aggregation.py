"""
Tests for ConsolidationAggregator.

Verifies:
- Account-by-account summation with eliminations and NCI columns
- Statement sections for the USD parent / EUR subsidiary scenario
- The balancing check and UnbalancedConsolidationError
- Content hash stability
- Property: any set of balanced member trial balances consolidates to a
  balanced result, whatever the rates, ownerships and methods
"""

from decimal import Decimal
from uuid import UUID

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from consolidation_engines.aggregation import ConsolidatedResult, ConsolidationAggregator
from consolidation_engines.elimination import EliminationEvaluator
from consolidation_engines.member import MemberConsolidator, MemberContribution
from consolidation_engines.translation import CurrencyTranslator, TranslationRates
from consolidation_kernel.domain.accounts import ConsolidationAccounts
from consolidation_kernel.domain.group import ConsolidationMethod, ParentCompany
from consolidation_kernel.domain.ledger import AccountType, ValidationIssue, IssueCode
from consolidation_kernel.exceptions import UnbalancedConsolidationError
from tests.fakes import (
    PARENT_ID,
    SUB_ID,
    parent_balance,
    receivable_payable_rule,
    subsidiary,
    subsidiary_balance,
    tb_line,
)

ACCOUNTS = ConsolidationAccounts()


def _scenario_result(issues=()) -> ConsolidatedResult:
    translator = CurrencyTranslator(ACCOUNTS.translation_adjustment)
    consolidator = MemberConsolidator(ACCOUNTS)
    parent_tb = translator.translate(
        company_id=PARENT_ID, lines=parent_balance(), functional_currency="USD",
        reporting_currency="USD", rates=TranslationRates.identity(),
    )
    sub_tb = translator.translate(
        company_id=SUB_ID, lines=subsidiary_balance(), functional_currency="EUR",
        reporting_currency="USD", rates=TranslationRates.of("1.10", "1.08", "1.05"),
    )
    member = subsidiary()
    contributions = [
        consolidator.consolidate_parent(ParentCompany(PARENT_ID, "USD"), parent_tb),
        consolidator.consolidate(member=member, translated=sub_tb),
    ]
    outcome = EliminationEvaluator(ACCOUNTS).evaluate(
        rules=[receivable_payable_rule()],
        member_balances={c.company_id: c.lines for c in contributions},
        members={SUB_ID: member},
        reporting_currency="USD",
    )
    return ConsolidationAggregator(ACCOUNTS).aggregate(
        contributions=contributions,
        eliminations=outcome.entries,
        reporting_currency="USD",
        issues=issues,
    )


class TestScenario:
    def test_consolidated_balances(self):
        result = _scenario_result()
        expected = {
            "1000": "52000.00",
            "1200": "0.00",
            "2000": "-4400.00",
            "2100": "0.00",
            "3000": "-35500.00",
            "3100": "-3150.00",
            "3800": "-690.00",
            "3900": "-3300.00",
            "3910": "3300.00",
            "4000": "-29060.00",
            "5000": "20800.00",
        }
        assert {line.account_id: line.consolidated_balance for line in result.lines} == {
            k: Decimal(v) for k, v in expected.items()
        }

    def test_elimination_and_nci_columns(self):
        result = _scenario_result()
        receivable = result.line_for("1200")
        assert receivable.aggregated_balance == Decimal("1100.00")
        assert receivable.elimination_amount == Decimal("-1100.00")
        nci = result.line_for("3900")
        assert nci.aggregated_balance == 0
        assert nci.nci_amount == Decimal("-3300.00")

    def test_sections(self):
        sections = _scenario_result().sections
        assert sections.total_assets == Decimal("52000.00")
        assert sections.total_liabilities == Decimal("4400.00")
        assert sections.total_nci == Decimal("3300.00")
        assert sections.translation_adjustment == Decimal("690.00")
        assert sections.net_income == Decimal("8260.00")
        assert sections.total_equity == Decimal("43610.00")
        assert sections.is_balanced

    def test_lines_ordered_by_account(self):
        ids = [line.account_id for line in _scenario_result().lines]
        assert ids == sorted(ids)

    def test_single_translation_adjustment_line(self):
        result = _scenario_result()
        assert [line.account_id for line in result.lines].count("3800") == 1

    def test_content_hash_is_stable(self):
        assert _scenario_result().content_hash == _scenario_result().content_hash
        assert len(_scenario_result().content_hash) == 64

    def test_issues_carried(self):
        warning = ValidationIssue.warning(IssueCode.EMPTY_TRIAL_BALANCE, "empty")
        result = _scenario_result(issues=(warning,))
        assert result.warnings == (warning,)

    def test_dict_form(self):
        result = _scenario_result()
        assert ConsolidatedResult.from_dict(result.to_dict()) == result

    def test_balance_of_missing_account_is_zero(self):
        assert _scenario_result().balance_of("9999") == 0


class TestUnbalanced:
    def test_unbalanced_contribution_raises(self):
        contribution = MemberContribution(
            company_id=PARENT_ID,
            method=ConsolidationMethod.FULL,
            requested_method=ConsolidationMethod.FULL,
            ownership_percentage=Decimal("100"),
            lines=(
                tb_line("1000", AccountType.ASSET, "100.00"),
                tb_line("3000", AccountType.EQUITY, "-99.00"),
            ),
        )
        with pytest.raises(UnbalancedConsolidationError):
            ConsolidationAggregator(ACCOUNTS).aggregate(
                contributions=[contribution], eliminations=[], reporting_currency="USD",
            )


# =============================================================================
# Balancing property
# =============================================================================

_cents = st.integers(min_value=1, max_value=10_000_000).map(lambda n: Decimal(n).scaleb(-2))
_rates = st.sampled_from(["0.0091", "0.85", "1", "1.0833", "1.10", "1.2345", "7.1234", "150.255"])
_methods = st.sampled_from(
    [ConsolidationMethod.FULL, ConsolidationMethod.EQUITY, ConsolidationMethod.COST]
)


@st.composite
def _trial_balance(draw):
    """A balanced trial balance with every account type represented."""
    assets = draw(st.lists(_cents, min_size=1, max_size=4))
    liabilities = draw(st.lists(_cents, min_size=0, max_size=3))
    revenue = draw(_cents)
    expense = draw(_cents)
    lines = [tb_line(f"1{i:03d}", AccountType.ASSET, a) for i, a in enumerate(assets)]
    lines += [tb_line(f"2{i:03d}", AccountType.LIABILITY, -a) for i, a in enumerate(liabilities)]
    lines.append(tb_line("4000", AccountType.REVENUE, -revenue))
    lines.append(tb_line("5000", AccountType.EXPENSE, expense))
    plug = -sum((line.amount for line in lines), Decimal("0"))
    lines.append(tb_line("3000", AccountType.EQUITY, plug))
    return lines


@st.composite
def _member(draw, index: int):
    company_id = UUID(int=0xB00 + index)
    method = draw(_methods)
    return (
        subsidiary(
            company_id=company_id,
            ownership=str(draw(st.integers(min_value=1, max_value=100))),
            method=method,
            currency="EUR",
            investment_cost=draw(_cents) if method == ConsolidationMethod.COST else None,
            goodwill_amount=draw(st.one_of(st.none(), _cents)) if method == ConsolidationMethod.EQUITY else None,
        ),
        draw(_trial_balance()),
        TranslationRates.of(draw(_rates), draw(_rates), draw(_rates)),
    )


@st.composite
def _group(draw):
    count = draw(st.integers(min_value=1, max_value=4))
    return draw(_trial_balance()), [draw(_member(i)) for i in range(count)]


class TestBalancingProperty:
    @settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    @given(group=_group())
    def test_any_group_balances(self, group):
        parent_lines, members = group
        translator = CurrencyTranslator(ACCOUNTS.translation_adjustment)
        consolidator = MemberConsolidator(ACCOUNTS)

        parent_tb = translator.translate(
            company_id=PARENT_ID, lines=parent_lines, functional_currency="USD",
            reporting_currency="USD", rates=TranslationRates.identity(),
        )
        contributions = [consolidator.consolidate_parent(ParentCompany(PARENT_ID, "USD"), parent_tb)]
        for member, lines, rates in members:
            translated = translator.translate(
                company_id=member.company_id, lines=lines, functional_currency="EUR",
                reporting_currency="USD", rates=rates,
            )
            contributions.append(consolidator.consolidate(member=member, translated=translated))

        result = ConsolidationAggregator(ACCOUNTS).aggregate(
            contributions=contributions, eliminations=[], reporting_currency="USD",
        )

        sections = result.sections
        assert sections.is_balanced
        assert sections.total_assets == (
            sections.total_liabilities + sections.total_equity
            + sections.total_nci + sections.translation_adjustment
        )
