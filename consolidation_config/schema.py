"""
Settings schema (``consolidation_config.schema``).

Frozen dataclasses only. Defaults describe a workable configuration so that
tests and small deployments need no YAML at all.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from consolidation_kernel.domain.accounts import ConsolidationAccounts, SyntheticAccount

__all__ = ["ConsolidationAccounts", "EngineSettings", "RetrySettings", "SyntheticAccount"]


@dataclass(frozen=True)
class RetrySettings:
    """Bounded exponential backoff for transient collaborator failures."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 5.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)


@dataclass(frozen=True)
class EngineSettings:
    max_workers: int = 4
    retry: RetrySettings = field(default_factory=RetrySettings)
    # None: unmatched intercompany balances are warnings, never blocking
    intercompany_tolerance: Decimal | None = None
    accounts: ConsolidationAccounts = field(default_factory=ConsolidationAccounts)
