"""
Module: consolidation_engines.method_determination
Responsibility:
    Suggest the consolidation method for a member from its ownership
    percentage and VIE determination.

Architecture position:
    Engines -- pure, zero I/O. Used by the run repository when a member row
    carries no explicit method and the group has no default.

Thresholds:
    - VIE determination naming the group as primary beneficiary -> VIE
    - ownership > 50%                                           -> Full
    - 20% <= ownership <= 50%                                   -> Equity
    - ownership < 20%                                           -> Cost
"""

from __future__ import annotations

from decimal import Decimal

from consolidation_kernel.domain.group import ConsolidationMethod, VIEDetermination

CONTROL_THRESHOLD = Decimal("50")
SIGNIFICANT_INFLUENCE_THRESHOLD = Decimal("20")


def determine_method(
    ownership_percentage: Decimal,
    vie_determination: VIEDetermination | None = None,
) -> ConsolidationMethod:
    if vie_determination is not None and vie_determination.is_primary_beneficiary:
        return ConsolidationMethod.VARIABLE_INTEREST_ENTITY
    if ownership_percentage > CONTROL_THRESHOLD:
        return ConsolidationMethod.FULL
    if ownership_percentage >= SIGNIFICANT_INFLUENCE_THRESHOLD:
        return ConsolidationMethod.EQUITY
    return ConsolidationMethod.COST
