"""Error taxonomy and retry logic.

Implements robust error handling with:
- An exception hierarchy rooted at TermpulseError
- Context error classification (deadline expiry and cancellation)
- RetryPolicy: polynomial backoff for transient failures
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Exceptions
# =============================================================================


class TermpulseError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(TermpulseError):
    """Raised for invalid datasource or alias configuration.

    Always fatal at construction time, never raised per query.
    """


class DatasourceNotFoundError(TermpulseError):
    """Raised when a query references an unknown datasource ID."""

    def __init__(self, datasource_id: str):
        super().__init__(f"datasource {datasource_id} does not exist")
        self.datasource_id = datasource_id


class BackendError(TermpulseError):
    """Raised by backend clients for failed requests or bad payloads."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class RetriesExhaustedError(TermpulseError):
    """Raised when all retry attempts have been exhausted."""

    def __init__(self, message: str, attempts: int, last_exception: Exception | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


class RateLimitTimeoutError(TermpulseError, TimeoutError):
    """Raised when a query could not get a concurrency slot before its deadline."""


class NoMetricsError(TermpulseError):
    """Raised when a query succeeded but returned no usable points."""


class WidgetSyncError(TermpulseError):
    """A widget failed to sync; reported by the dashboard, never propagated."""

    def __init__(self, message: str, widget: str = ""):
        super().__init__(message)
        self.widget = widget


def is_context_error(exc: BaseException) -> bool:
    """Check if an exception comes from a deadline or a cancellation.

    Context errors are never retried and are counted apart from failures.
    """
    return isinstance(exc, (TimeoutError, asyncio.CancelledError))


# =============================================================================
# RetryPolicy
# =============================================================================


@dataclass
class RetryPolicy:
    """Retry policy with polynomial backoff.

    Calculates the delay after a failed attempt as:
    base_delay * attempt^delay_exponent

    An exponent of 1 gives linear backoff, 2 gives quadratic backoff.
    Context errors end the loop immediately.
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    delay_exponent: float = 1.0
    max_delay: float = 10.0

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay after the given attempt number.

        Args:
            attempt: Attempt number (1-based).

        Returns:
            Delay in seconds.
        """
        delay = self.base_delay * (attempt**self.delay_exponent)
        return min(delay, self.max_delay)

    async def execute(
        self,
        func: Callable[[], Coroutine[Any, Any, T]],
        description: str = "operation",
    ) -> T:
        """Execute function with retry logic.

        Args:
            func: Async function to execute.
            description: Label used in log lines and the exhaustion message.

        Returns:
            Function result.

        Raises:
            RetriesExhaustedError: If all attempts fail with non-context errors.
            TimeoutError: If an attempt hit a deadline.
            asyncio.CancelledError: If the surrounding task was cancelled.
        """
        last_exception: Exception | None = None
        attempts = max(1, self.max_attempts)

        for attempt in range(1, attempts + 1):
            try:
                return await func()
            except Exception as e:
                if is_context_error(e):
                    raise
                last_exception = e
                logger.warning(f"{description}: attempt {attempt}/{attempts} failed: {e}")

                if attempt < attempts:
                    delay = self.calculate_delay(attempt)
                    logger.debug(f"{description}: retrying in {delay:.2f}s")
                    await asyncio.sleep(delay)

        raise RetriesExhaustedError(
            f"{description} failed after {attempts} attempts: {last_exception}",
            attempts=attempts,
            last_exception=last_exception,
        ) from last_exception
