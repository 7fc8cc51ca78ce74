"""ORM models for consolidation groups, runs and results."""

from consolidation_runs.models.group import (
    ConsolidationGroupModel,
    ConsolidationMemberModel,
    EliminationRuleModel,
)
from consolidation_runs.models.run import ConsolidatedResultModel, ConsolidationRunModel

__all__ = [
    "ConsolidatedResultModel",
    "ConsolidationGroupModel",
    "ConsolidationMemberModel",
    "ConsolidationRunModel",
    "EliminationRuleModel",
]
