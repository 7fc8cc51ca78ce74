"""
Bounded retry for collaborator calls.

Only InfrastructureError with transient=True is retried. Validation,
configuration and conflict errors propagate on the first attempt.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from consolidation_config.schema import RetrySettings
from consolidation_kernel.exceptions import InfrastructureError
from consolidation_kernel.logging_config import get_logger

logger = get_logger("runs.retry")

T = TypeVar("T")


def call_with_retry(
    fn: Callable[[], T],
    policy: RetrySettings,
    operation: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying transient infrastructure failures with exponential
    backoff up to policy.max_attempts attempts in total.
    """
    attempt = 1
    while True:
        try:
            return fn()
        except InfrastructureError as exc:
            if not exc.transient or attempt >= policy.max_attempts:
                logger.error(
                    "collaborator_call_failed",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "transient": exc.transient,
                        "error_code": exc.code,
                    },
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "collaborator_call_retrying",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "delay_seconds": delay,
                    "error_code": exc.code,
                },
            )
            sleep(delay)
            attempt += 1
