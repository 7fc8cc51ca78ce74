"""Tests for the ownership-based consolidation method suggestion."""

from decimal import Decimal

import pytest

from consolidation_engines.method_determination import determine_method
from consolidation_kernel.domain.group import ConsolidationMethod, VIEDetermination


class TestDetermineMethod:
    @pytest.mark.parametrize(
        "ownership, expected",
        [
            ("100", ConsolidationMethod.FULL),
            ("50.01", ConsolidationMethod.FULL),
            ("50", ConsolidationMethod.EQUITY),
            ("20", ConsolidationMethod.EQUITY),
            ("19.99", ConsolidationMethod.COST),
            ("5", ConsolidationMethod.COST),
        ],
    )
    def test_ownership_thresholds(self, ownership, expected):
        assert determine_method(Decimal(ownership)) == expected

    def test_primary_beneficiary_overrides_ownership(self):
        determination = VIEDetermination(is_primary_beneficiary=True)
        assert determine_method(Decimal("10"), determination) == ConsolidationMethod.VARIABLE_INTEREST_ENTITY

    def test_vie_without_primary_beneficiary_falls_back_to_ownership(self):
        determination = VIEDetermination(is_primary_beneficiary=False)
        assert determine_method(Decimal("35"), determination) == ConsolidationMethod.EQUITY
