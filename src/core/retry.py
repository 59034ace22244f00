"""Bounded retry and timeout helpers for storage operations.

Transient storage failures and timeouts are retried with exponential
backoff. Other errors propagate immediately.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, TypeVar

from core.errors import TransientStorageError
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)

ResultT = TypeVar("ResultT")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry bounds for one class of operations.

    Attributes:
        max_attempts: Total attempts including the first one.
        backoff_seconds: Delay before the second attempt, doubled afterwards.
        timeout_seconds: Per-attempt timeout, disabled when zero.
    """

    max_attempts: int
    backoff_seconds: float
    timeout_seconds: float = 0.0

    def delay_for(self, attempt: int) -> float:
        """Return backoff delay after a failed one-based attempt."""
        return self.backoff_seconds * (2 ** (attempt - 1))


def call_with_timeout(operation: Callable[[], ResultT], timeout_seconds: float) -> ResultT:
    """Run an operation and fail transiently when it exceeds the timeout.

    Args:
        operation: Zero-argument callable.
        timeout_seconds: Timeout in seconds, disabled when zero.

    Returns:
        Operation result.

    Raises:
        TransientStorageError: If the timeout expires.
    """
    if timeout_seconds <= 0:
        return operation()
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(operation)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError as error:
        raise TransientStorageError(
            f"Operation timed out after {timeout_seconds:.1f}s and will be retried."
        ) from error
    finally:
        executor.shutdown(wait=False)


def call_with_retry(
    operation: Callable[[], ResultT],
    policy: RetryPolicy,
    description: str,
    before_retry: Callable[[int], None] | None = None,
) -> ResultT:
    """Run an operation with bounded retries on transient failures.

    Args:
        operation: Zero-argument callable.
        policy: Retry bounds.
        description: Operation label used in log events.
        before_retry: Optional hook called with the next attempt number.
            It may raise to abandon the remaining attempts.

    Returns:
        Operation result.

    Raises:
        TransientStorageError: If every attempt failed transiently.
    """
    attempt = 1
    while True:
        try:
            return call_with_timeout(operation, policy.timeout_seconds)
        except TransientStorageError as error:
            if attempt >= policy.max_attempts:
                _LOGGER.error(
                    "retry_exhausted",
                    operation=description,
                    attempts=attempt,
                    error=str(error),
                )
                raise
            delay = policy.delay_for(attempt)
            _LOGGER.warning(
                "retry_scheduled",
                operation=description,
                attempt=attempt,
                delay_seconds=delay,
                error=str(error),
            )
            time.sleep(delay)
            attempt += 1
            if before_retry is not None:
                before_retry(attempt)
