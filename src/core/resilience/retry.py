"""
Retry and backoff configuration.

Uses the exception hierarchy to make retry decisions:
- Transient errors: retry after a backoff
- Auth errors: retry once the provider has been asked again
- Permanent errors: fail immediately (no retry)

Stream recovery uses a fixed backoff (exponential_base=1.0) so that
reconnect attempts are separated by exactly recovery_backoff_ms.
"""

from dataclasses import dataclass

from core.errors.exceptions import PipelineError, classify_exception
from core.types import ErrorCategory


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)

    @classmethod
    def fixed(cls, max_attempts: int, delay: float) -> "RetryConfig":
        """Constant delay between attempts."""
        return cls(
            max_attempts=max_attempts,
            base_delay=delay,
            max_delay=delay,
            exponential_base=1.0,
        )

    def get_delay(self, attempt: int) -> float:
        """
        Calculate the delay before the next attempt.

        Args:
            attempt: 0-indexed attempt number

        Returns:
            Delay in seconds
        """
        return min(self.base_delay * (self.exponential_base**attempt), self.max_delay)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """
        Determine if error should be retried.

        Args:
            error: The exception that occurred
            attempt: 0-indexed current attempt

        Returns:
            True if should retry
        """
        if attempt >= self.max_attempts - 1:
            return False

        if isinstance(error, PipelineError):
            return error.is_retryable

        return classify_exception(error) in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )


@dataclass
class RetryStats:
    """Statistics from a retry operation."""

    attempts: int = 0
    total_delay: float = 0.0
    final_error: Exception | None = None
    success: bool = False


__all__ = [
    "RetryConfig",
    "RetryStats",
]
