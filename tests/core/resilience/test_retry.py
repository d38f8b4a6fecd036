"""
Tests for retry configuration used by stream recovery.
"""

import pytest

from core.errors.exceptions import (
    AuthenticationError,
    PermanentError,
    TransientError,
    TransportFault,
)
from core.resilience.retry import RetryConfig, RetryStats


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_default_values(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 30.0
        assert config.exponential_base == 2.0

    def test_type_conversion_from_strings(self):
        """Config handles string inputs (e.g., from YAML)."""
        config = RetryConfig(
            max_attempts="5",
            base_delay="2.5",
            max_delay="60",
            exponential_base="3",
        )
        assert config.max_attempts == 5
        assert config.base_delay == 2.5
        assert config.max_delay == 60.0
        assert config.exponential_base == 3.0

    def test_exponential_backoff_calculation(self):
        config = RetryConfig(base_delay=1.0, exponential_base=2.0, max_delay=30.0)
        assert [config.get_delay(i) for i in range(3)] == [1.0, 2.0, 4.0]

    def test_delay_capped_at_max(self):
        config = RetryConfig(base_delay=10.0, max_delay=15.0)
        assert config.get_delay(5) == 15.0

    def test_fixed_schedule(self):
        config = RetryConfig.fixed(max_attempts=4, delay=2.0)
        assert config.max_attempts == 4
        assert [config.get_delay(i) for i in range(4)] == [2.0, 2.0, 2.0, 2.0]


class TestShouldRetry:
    def test_stops_at_last_attempt(self):
        config = RetryConfig(max_attempts=3)
        error = TransientError("x")
        assert config.should_retry(error, 0) is True
        assert config.should_retry(error, 1) is True
        assert config.should_retry(error, 2) is False

    def test_no_attempts_never_retries(self):
        assert RetryConfig.fixed(max_attempts=0, delay=0.1).should_retry(TransientError("x"), 0) is False

    def test_permanent_errors_not_retried(self):
        config = RetryConfig(max_attempts=5)
        assert config.should_retry(PermanentError("x"), 0) is False
        assert config.should_retry(AuthenticationError("bad creds"), 0) is False

    def test_transport_fault_retried(self):
        assert RetryConfig(max_attempts=5).should_retry(TransportFault("reset"), 0) is True

    @pytest.mark.parametrize(
        "error,expected",
        [
            (ConnectionError("reset"), True),
            (RuntimeError("permission denied"), False),
            (RuntimeError("odd"), True),
        ],
    )
    def test_plain_exceptions_classified(self, error, expected):
        assert RetryConfig(max_attempts=5).should_retry(error, 0) is expected


class TestRetryStats:
    def test_defaults(self):
        stats = RetryStats()
        assert stats.attempts == 0
        assert stats.success is False
        assert stats.final_error is None
