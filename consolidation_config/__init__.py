"""
consolidation_config -- engine settings for consolidation runs.

Responsibility:
    Provides the worker pool size, the retry policy for collaborator calls,
    the default intercompany tolerance and the accounts used for the lines
    the engine synthesizes (translation adjustment, NCI, equity-method and
    cost-method investments, goodwill).

Architecture position:
    Configuration. Depends on consolidation_kernel only. The engines and the
    run orchestrator receive an EngineSettings instance; they never read
    files themselves.

Usage:
    from consolidation_config import load_settings

    settings = load_settings("config/engine.yaml")
    settings = load_settings()   # packaged defaults
"""

from consolidation_config.loader import compute_checksum, load_settings, parse_settings
from consolidation_config.schema import (
    ConsolidationAccounts,
    EngineSettings,
    RetrySettings,
    SyntheticAccount,
)

__all__ = [
    "ConsolidationAccounts",
    "EngineSettings",
    "RetrySettings",
    "SyntheticAccount",
    "compute_checksum",
    "load_settings",
    "parse_settings",
]
