"""
Tests for call_with_retry.
"""

import pytest

from consolidation_config.schema import RetrySettings
from consolidation_kernel.exceptions import (
    ExchangeRateNotFoundError,
    ExchangeRateUnavailableError,
    TrialBalanceUnavailableError,
)
from consolidation_runs.services.retry import call_with_retry

POLICY = RetrySettings(max_attempts=3, base_delay_seconds=0.1, max_delay_seconds=0.15)


class _Failing:
    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


def _transient():
    return TrialBalanceUnavailableError("c1", "timeout", transient=True)


class TestCallWithRetry:
    def test_success_first_time(self):
        delays = []
        fn = _Failing([])
        assert call_with_retry(fn, POLICY, "op", sleep=delays.append) == "ok"
        assert fn.calls == 1
        assert delays == []

    def test_transient_then_success(self):
        delays = []
        fn = _Failing([_transient(), _transient()])
        assert call_with_retry(fn, POLICY, "op", sleep=delays.append) == "ok"
        assert fn.calls == 3
        assert delays == [0.1, 0.15]

    def test_gives_up_after_max_attempts(self):
        fn = _Failing([_transient() for _ in range(5)])
        with pytest.raises(TrialBalanceUnavailableError):
            call_with_retry(fn, POLICY, "op", sleep=lambda s: None)
        assert fn.calls == 3

    def test_permanent_failure_not_retried(self):
        fn = _Failing([ExchangeRateUnavailableError("EUR", "USD", "bad credentials", transient=False)])
        with pytest.raises(ExchangeRateUnavailableError):
            call_with_retry(fn, POLICY, "op", sleep=lambda s: None)
        assert fn.calls == 1

    def test_validation_error_not_retried(self):
        fn = _Failing([ExchangeRateNotFoundError("EUR", "USD", "2024-12-31", "spot")])
        with pytest.raises(ExchangeRateNotFoundError):
            call_with_retry(fn, POLICY, "op", sleep=lambda s: None)
        assert fn.calls == 1

    def test_retries_logged(self, captured_logs):
        fn = _Failing([_transient()])
        call_with_retry(fn, POLICY, "get_trial_balance", sleep=lambda s: None)
        retries = [r for r in captured_logs() if r["message"] == "collaborator_call_retrying"]
        assert len(retries) == 1
        assert retries[0]["operation"] == "get_trial_balance"
        assert retries[0]["error_code"] == "TRIAL_BALANCE_UNAVAILABLE"
