"""
Module: consolidation_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    consolidation engines. This is the import surface for consolidation_runs.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import consolidation_kernel (and sibling engine modules).
    MUST NOT import consolidation_runs or consolidation_config.

Invariants enforced:
    - Purity: engines never read the clock, the database or the network.
      Rates, balances and snapshots are passed in by the run orchestrator.
    - Decimal-only arithmetic.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine``, emitting
    CONSOLIDATION_ENGINE_TRACE log records with engine name, version, input
    fingerprint and duration.

Usage:
    from consolidation_engines import (
        CurrencyTranslator,
        MemberConsolidator,
        EliminationEvaluator,
        ConsolidationAggregator,
    )
"""

from consolidation_kernel.logging_config import get_logger

logger = get_logger("engines")

from consolidation_engines.aggregation import (  # noqa: E402
    ConsolidatedLine,
    ConsolidatedResult,
    ConsolidationAggregator,
    StatementSections,
)
from consolidation_engines.elimination import (  # noqa: E402
    EliminationEntry,
    EliminationEvaluator,
    EliminationLine,
    EliminationOutcome,
    entry_id_for,
)
from consolidation_engines.member import (  # noqa: E402
    MemberConsolidator,
    MemberContribution,
    NCIEntry,
)
from consolidation_engines.method_determination import determine_method  # noqa: E402
from consolidation_engines.tracer import compute_input_fingerprint, traced_engine  # noqa: E402
from consolidation_engines.translation import (  # noqa: E402
    CurrencyTranslator,
    TranslatedTrialBalance,
    TranslationRates,
)

__all__ = [
    "ConsolidatedLine",
    "ConsolidatedResult",
    "ConsolidationAggregator",
    "CurrencyTranslator",
    "EliminationEntry",
    "EliminationEvaluator",
    "EliminationLine",
    "EliminationOutcome",
    "MemberConsolidator",
    "MemberContribution",
    "NCIEntry",
    "StatementSections",
    "TranslatedTrialBalance",
    "TranslationRates",
    "compute_input_fingerprint",
    "determine_method",
    "entry_id_for",
    "traced_engine",
]
