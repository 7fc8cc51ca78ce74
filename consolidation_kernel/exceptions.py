"""
Typed Exception Hierarchy for the Consolidation Engine.

===============================================================================
WHY TYPED, CATEGORIZED EXCEPTIONS
===============================================================================

A consolidation run fails for very different reasons: an administrator set
up a group badly, a period is missing an exchange rate, a trial balance
service timed out, or somebody started the same run twice. The host service
must react to each of these differently (reject the request, show the
validation report, retry later, tell the user a run is already going), and it
must do so without parsing message strings.

Every exception therefore carries:
  1. A TYPE (catch by class, not by message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. A CATEGORY class attribute (closed set, mapped to transport status)
  4. Structured DATA as instance attributes

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ConsolidationError (base)
    |
    +-- ConfigurationError                       CONFIGURATION
    |   +-- GroupNotFoundError
    |   +-- GroupInactiveError
    |   +-- GroupHasNoMembersError
    |   +-- InvalidOwnershipError
    |   +-- DuplicateMemberError
    |   +-- MissingVIEDeterminationError
    |   +-- InvalidEliminationRuleError
    |   +-- SettingsError
    |
    +-- ConsolidationValidationError             VALIDATION
    |   +-- ExchangeRateNotFoundError
    |   +-- UnbalancedConsolidationError         (INTEGRITY)
    |
    +-- InfrastructureError                      INFRASTRUCTURE
    |   +-- TrialBalanceUnavailableError
    |   +-- ExchangeRateUnavailableError
    |   +-- AuditSinkError
    |
    +-- ConflictError                            CONFLICT
    |   +-- RunAlreadyExistsError
    |   +-- RunAlreadyInProgressError
    |   +-- AlreadyTerminalError
    |
    +-- RunNotFoundError                         NOT_FOUND
    +-- RunCancelledError                        (internal control flow)
    |
    +-- CurrencyError                            VALIDATION
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |
    +-- ImmutabilityViolationError               INTEGRITY
    +-- AuditChainBrokenError                    INTEGRITY

===============================================================================
HANDLING PATTERNS
===============================================================================

1. CONFIGURATION errors are raised before a run exists. Nothing is
   persisted; the caller fixes the group and tries again.

2. VALIDATION errors found during a run are collected as issues and end the
   run in Failed (or are demoted to warnings by run options). They are never
   retried.

3. INFRASTRUCTURE errors with transient=True are retried with bounded
   backoff by the run orchestrator, then fail the run:

    try:
        lines = source.get_trial_balance(company_id, as_of)
    except InfrastructureError as e:
        if e.transient:
            ...  # retry

4. CONFLICT errors are surfaced immediately and never retried.

5. INTEGRITY errors (unbalanced result, broken audit chain, mutation of a
   terminal record) indicate a defect. Investigate, do not retry.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Closed set of error categories exposed to the host service."""

    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    INFRASTRUCTURE = "infrastructure"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INTEGRITY = "integrity"


_HTTP_STATUS_BY_CATEGORY: dict[ErrorCategory, int] = {
    ErrorCategory.CONFIGURATION: 400,
    ErrorCategory.VALIDATION: 422,
    ErrorCategory.INFRASTRUCTURE: 503,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.INTEGRITY: 500,
}


class ConsolidationError(Exception):
    """
    Base exception for all consolidation engine errors.

    All subclasses must define a `code` class attribute for machine-readable
    error identification and inherit or override `category`.
    """

    code: str = "CONSOLIDATION_ERROR"
    category: ErrorCategory = ErrorCategory.INTEGRITY


def http_status_for(error: ConsolidationError) -> int:
    """Map an engine error to a transport status code deterministically."""
    return _HTTP_STATUS_BY_CATEGORY[error.category]


# Configuration errors


class ConfigurationError(ConsolidationError):
    """Base exception for invalid group, member, rule or settings setup."""

    code: str = "CONFIGURATION_ERROR"
    category: ErrorCategory = ErrorCategory.CONFIGURATION


class GroupNotFoundError(ConfigurationError):
    """Consolidation group does not exist for the organization."""

    code: str = "GROUP_NOT_FOUND"

    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Consolidation group not found: {group_id}")


class GroupInactiveError(ConfigurationError):
    """Consolidation group is inactive and cannot be consolidated."""

    code: str = "GROUP_INACTIVE"

    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Consolidation group {group_id} is inactive")


class GroupHasNoMembersError(ConfigurationError):
    """Consolidation group has no active members."""

    code: str = "GROUP_HAS_NO_MEMBERS"

    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Consolidation group {group_id} has no active members")


class InvalidOwnershipError(ConfigurationError):
    """Ownership percentage outside (0, 100]."""

    code: str = "INVALID_OWNERSHIP"

    def __init__(self, company_id: str, ownership_percentage: str):
        self.company_id = company_id
        self.ownership_percentage = ownership_percentage
        super().__init__(
            f"Ownership of {company_id} must be in (0, 100], "
            f"got {ownership_percentage}"
        )


class DuplicateMemberError(ConfigurationError):
    """The same company appears twice in a group (or as parent and member)."""

    code: str = "DUPLICATE_MEMBER"

    def __init__(self, group_id: str, company_id: str):
        self.group_id = group_id
        self.company_id = company_id
        super().__init__(
            f"Company {company_id} appears more than once in group {group_id}"
        )


class MissingVIEDeterminationError(ConfigurationError):
    """VIE method selected without a VIE determination."""

    code: str = "MISSING_VIE_DETERMINATION"

    def __init__(self, company_id: str):
        self.company_id = company_id
        super().__init__(
            f"Member {company_id} uses the VIE method but has no VIE determination"
        )


class InvalidEliminationRuleError(ConfigurationError):
    """Elimination rule is malformed."""

    code: str = "INVALID_ELIMINATION_RULE"

    def __init__(self, rule_id: str, reason: str):
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"Invalid elimination rule {rule_id}: {reason}")


class SettingsError(ConfigurationError):
    """Engine settings file is malformed."""

    code: str = "SETTINGS_ERROR"

    def __init__(self, reason: str, source: str | None = None):
        self.reason = reason
        self.source = source
        where = f" ({source})" if source else ""
        super().__init__(f"Invalid engine settings{where}: {reason}")


# Validation errors


class ConsolidationValidationError(ConsolidationError):
    """
    Run-level validation failed.

    Carries the codes of the blocking issues so the run's error message and
    the host response agree.
    """

    code: str = "CONSOLIDATION_VALIDATION_FAILED"
    category: ErrorCategory = ErrorCategory.VALIDATION

    def __init__(self, message: str, issue_codes: tuple[str, ...] = ()):
        self.issue_codes = issue_codes
        super().__init__(message)


class ExchangeRateNotFoundError(ConsolidationValidationError):
    """No exchange rate exists for the currency pair, date and kind."""

    code: str = "EXCHANGE_RATE_NOT_FOUND"

    def __init__(self, from_currency: str, to_currency: str, as_of: str, kind: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.as_of = as_of
        self.kind = kind
        super().__init__(
            f"No {kind} exchange rate found for {from_currency}/{to_currency} "
            f"as of {as_of}",
            ("MISSING_EXCHANGE_RATE",),
        )


class UnbalancedConsolidationError(ConsolidationValidationError):
    """Consolidated result breaks assets = liabilities + equity + NCI + CTA."""

    code: str = "UNBALANCED_CONSOLIDATION"
    category: ErrorCategory = ErrorCategory.INTEGRITY

    def __init__(self, total_assets: str, total_claims: str):
        self.total_assets = total_assets
        self.total_claims = total_claims
        super().__init__(
            f"Consolidated result does not balance: assets {total_assets} != "
            f"liabilities + equity + NCI + translation adjustment {total_claims}"
        )


# Infrastructure errors


class InfrastructureError(ConsolidationError):
    """
    A collaborator could not be reached.

    transient=True marks failures worth retrying (timeouts, dropped
    connections). Permanent failures fail the run immediately.
    """

    code: str = "INFRASTRUCTURE_ERROR"
    category: ErrorCategory = ErrorCategory.INFRASTRUCTURE

    def __init__(self, message: str, transient: bool = True):
        self.transient = transient
        super().__init__(message)


class TrialBalanceUnavailableError(InfrastructureError):
    """Trial balance source failed for a company."""

    code: str = "TRIAL_BALANCE_UNAVAILABLE"

    def __init__(self, company_id: str, reason: str, transient: bool = True):
        self.company_id = company_id
        self.reason = reason
        super().__init__(
            f"Trial balance unavailable for company {company_id}: {reason}",
            transient=transient,
        )


class ExchangeRateUnavailableError(InfrastructureError):
    """Exchange rate provider failed (as opposed to having no rate)."""

    code: str = "EXCHANGE_RATE_UNAVAILABLE"

    def __init__(self, from_currency: str, to_currency: str, reason: str,
                 transient: bool = True):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.reason = reason
        super().__init__(
            f"Exchange rate provider unavailable for {from_currency}/{to_currency}: "
            f"{reason}",
            transient=transient,
        )


class AuditSinkError(InfrastructureError):
    """The audit sink failed to store a terminal-transition record."""

    code: str = "AUDIT_SINK_UNAVAILABLE"

    def __init__(self, run_id: str, reason: str, transient: bool = True):
        self.run_id = run_id
        self.reason = reason
        super().__init__(
            f"Audit record for run {run_id} could not be written: {reason}",
            transient=transient,
        )


# Conflict errors


class ConflictError(ConsolidationError):
    """Base exception for run conflicts. Never retried."""

    code: str = "CONFLICT"
    category: ErrorCategory = ErrorCategory.CONFLICT


class RunAlreadyExistsError(ConflictError):
    """A Completed run already exists for (group, period)."""

    code: str = "RUN_ALREADY_EXISTS"

    def __init__(self, group_id: str, period: str, existing_run_id: str):
        self.group_id = group_id
        self.period = period
        self.existing_run_id = existing_run_id
        super().__init__(
            f"Completed run {existing_run_id} already exists for group "
            f"{group_id} period {period}; set force_regeneration to replace it"
        )


class RunAlreadyInProgressError(ConflictError):
    """Another run holds the advisory lock for (group, period)."""

    code: str = "RUN_ALREADY_IN_PROGRESS"

    def __init__(self, group_id: str, period: str):
        self.group_id = group_id
        self.period = period
        super().__init__(
            f"A consolidation run for group {group_id} period {period} "
            "is already in progress"
        )


class AlreadyTerminalError(ConflictError):
    """Run is Completed, Failed or Cancelled and cannot change."""

    code: str = "RUN_ALREADY_TERMINAL"

    def __init__(self, run_id: str, status: str):
        self.run_id = run_id
        self.status = status
        super().__init__(f"Run {run_id} is already {status}")


# Run lookup and control flow


class RunNotFoundError(ConsolidationError):
    """Run does not exist for the organization."""

    code: str = "RUN_NOT_FOUND"
    category: ErrorCategory = ErrorCategory.NOT_FOUND

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Consolidation run not found: {run_id}")


class RunCancelledError(ConsolidationError):
    """Raised at a cancellation checkpoint to unwind a run's pipeline."""

    code: str = "RUN_CANCELLED"
    category: ErrorCategory = ErrorCategory.CONFLICT

    def __init__(self, run_id: str, checkpoint: str):
        self.run_id = run_id
        self.checkpoint = checkpoint
        super().__init__(f"Run {run_id} cancelled at {checkpoint}")


# Currency errors


class CurrencyError(ConsolidationError):
    """Base exception for currency-related errors."""

    code: str = "CURRENCY_ERROR"
    category: ErrorCategory = ErrorCategory.VALIDATION


class InvalidCurrencyError(CurrencyError):
    """Invalid ISO 4217 currency code provided."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


class CurrencyMismatchError(CurrencyError):
    """Attempted operation on mismatched currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str):
        self.currency1 = currency1
        self.currency2 = currency2
        super().__init__(f"Currency mismatch: {currency1} vs {currency2}")


# Integrity errors


class ImmutabilityViolationError(ConsolidationError):
    """Attempted to modify or delete a terminal run, a result or an audit event."""

    code: str = "IMMUTABILITY_VIOLATION"
    category: ErrorCategory = ErrorCategory.INTEGRITY

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class AuditChainBrokenError(ConsolidationError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"
    category: ErrorCategory = ErrorCategory.INTEGRITY

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )
