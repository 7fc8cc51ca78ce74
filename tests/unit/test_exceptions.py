"""
Tests for the consolidation error taxonomy.

Every error exposes a stable code and a category, and every category maps
to one transport status.
"""

import pytest

from consolidation_kernel.exceptions import (
    AlreadyTerminalError,
    AuditSinkError,
    ConfigurationError,
    ConflictError,
    ConsolidationError,
    ConsolidationValidationError,
    DuplicateMemberError,
    ErrorCategory,
    ExchangeRateNotFoundError,
    ExchangeRateUnavailableError,
    GroupNotFoundError,
    ImmutabilityViolationError,
    InfrastructureError,
    InvalidOwnershipError,
    RunAlreadyExistsError,
    RunAlreadyInProgressError,
    RunCancelledError,
    RunNotFoundError,
    SettingsError,
    TrialBalanceUnavailableError,
    UnbalancedConsolidationError,
    http_status_for,
)


class TestCategories:
    @pytest.mark.parametrize(
        "error, category, status",
        [
            (GroupNotFoundError("g"), ErrorCategory.CONFIGURATION, 400),
            (InvalidOwnershipError("c", "120"), ErrorCategory.CONFIGURATION, 400),
            (SettingsError("bad"), ErrorCategory.CONFIGURATION, 400),
            (ConsolidationValidationError("bad"), ErrorCategory.VALIDATION, 422),
            (ExchangeRateNotFoundError("EUR", "USD", "2024-12-31", "spot"), ErrorCategory.VALIDATION, 422),
            (TrialBalanceUnavailableError("c", "timeout"), ErrorCategory.INFRASTRUCTURE, 503),
            (ExchangeRateUnavailableError("EUR", "USD", "timeout"), ErrorCategory.INFRASTRUCTURE, 503),
            (AuditSinkError("run-1", "disk full"), ErrorCategory.INFRASTRUCTURE, 503),
            (RunAlreadyExistsError("g", "2024-12", "r"), ErrorCategory.CONFLICT, 409),
            (RunAlreadyInProgressError("g", "2024-12"), ErrorCategory.CONFLICT, 409),
            (AlreadyTerminalError("r", "completed"), ErrorCategory.CONFLICT, 409),
            (RunNotFoundError("r"), ErrorCategory.NOT_FOUND, 404),
            (UnbalancedConsolidationError("10.00", "9.00"), ErrorCategory.INTEGRITY, 500),
            (ImmutabilityViolationError("Run", "r", "terminal"), ErrorCategory.INTEGRITY, 500),
        ],
    )
    def test_category_and_status(self, error, category, status):
        assert error.category == category
        assert http_status_for(error) == status

    def test_every_category_has_a_status(self):
        class _Categorised(ConsolidationError):
            pass

        for category in ErrorCategory:
            error = _Categorised("x")
            error.category = category
            assert isinstance(http_status_for(error), int)


class TestHierarchy:
    def test_configuration_errors(self):
        assert issubclass(DuplicateMemberError, ConfigurationError)
        assert issubclass(SettingsError, ConfigurationError)

    def test_conflicts(self):
        for cls in (RunAlreadyExistsError, RunAlreadyInProgressError, AlreadyTerminalError):
            assert issubclass(cls, ConflictError)

    def test_infrastructure(self):
        assert issubclass(TrialBalanceUnavailableError, InfrastructureError)
        assert issubclass(ExchangeRateUnavailableError, InfrastructureError)


class TestAttributes:
    def test_missing_rate_carries_issue_code(self):
        error = ExchangeRateNotFoundError("EUR", "USD", "2024-12-31", "average")
        assert error.code == "EXCHANGE_RATE_NOT_FOUND"
        assert error.issue_codes == ("MISSING_EXCHANGE_RATE",)
        assert "EUR/USD" in str(error)

    def test_transient_flag(self):
        assert TrialBalanceUnavailableError("c", "reset").transient
        assert not TrialBalanceUnavailableError("c", "gone", transient=False).transient

    def test_existing_run_id(self):
        error = RunAlreadyExistsError("g", "2024-12", "run-1")
        assert error.existing_run_id == "run-1"
        assert "force_regeneration" in str(error)

    def test_cancelled_checkpoint(self):
        error = RunCancelledError("run-1", "member:abc")
        assert error.checkpoint == "member:abc"
        assert error.code == "RUN_CANCELLED"

    def test_codes_are_unique(self):
        classes = [
            GroupNotFoundError, InvalidOwnershipError, DuplicateMemberError,
            SettingsError, ConsolidationValidationError, ExchangeRateNotFoundError,
            UnbalancedConsolidationError, TrialBalanceUnavailableError,
            ExchangeRateUnavailableError, AuditSinkError, RunAlreadyExistsError,
            RunAlreadyInProgressError, AlreadyTerminalError, RunNotFoundError,
            RunCancelledError, ImmutabilityViolationError,
        ]
        codes = [cls.code for cls in classes]
        assert len(codes) == len(set(codes))
