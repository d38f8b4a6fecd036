"""Tests for the stream recovery controller."""

import asyncio

import pytest

from config.config import StreamOptions
from core.errors.exceptions import AuthenticationError, RecoveryExhausted, TransportFault
from stream_ingest import metrics
from stream_ingest.common.recovery import RecoveryController


class FlakyReconnect:
    """Fails the first ``failures`` calls, then returns a stream."""

    def __init__(self, failures: int, error: Exception = None, hang: float = 0.0):
        self.failures = failures
        self.error = error or ConnectionError("service unavailable")
        self.hang = hang
        self.calls = 0
        self.stream = object()

    async def __call__(self):
        self.calls += 1
        if self.hang:
            await asyncio.sleep(self.hang)
        if self.calls <= self.failures:
            raise self.error
        return self.stream


def controller(**overrides):
    values = dict(recovery_retries=3, recovery_backoff_ms=10, recovery_timeout_ms=2000)
    values.update(overrides)
    return RecoveryController(StreamOptions(**values), table_name="recovery_test")


def recoveries(result: str) -> float:
    value = metrics.REGISTRY.get_sample_value(
        "ingest_stream_recoveries_total", {"table": "recovery_test", "result": result}
    )
    return value or 0.0


class TestRecoveryController:
    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self):
        reconnect = FlakyReconnect(0)
        before = recoveries("success")
        stream, stats = await controller().run(reconnect)
        assert stream is reconnect.stream
        assert stats.attempts == 1
        assert stats.total_delay == 0
        assert recoveries("success") == before + 1

    @pytest.mark.asyncio
    async def test_retries_with_fixed_backoff(self):
        reconnect = FlakyReconnect(2)
        stream, stats = await controller().run(reconnect)
        assert stream is reconnect.stream
        assert stats.attempts == 3
        assert stats.total_delay == pytest.approx(0.02)

    @pytest.mark.asyncio
    async def test_exhausted_after_max_attempts(self):
        reconnect = FlakyReconnect(10)
        before = recoveries("exhausted")
        with pytest.raises(RecoveryExhausted) as exc_info:
            await controller().run(reconnect)
        assert reconnect.calls == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.cause, TransportFault)
        assert recoveries("exhausted") == before + 1

    @pytest.mark.asyncio
    async def test_zero_retries_never_reconnects(self):
        reconnect = FlakyReconnect(0)
        before = recoveries("exhausted")
        with pytest.raises(RecoveryExhausted) as exc_info:
            await controller(recovery_retries=0).run(reconnect)
        assert reconnect.calls == 0
        assert exc_info.value.attempts == 0
        assert recoveries("exhausted") == before + 1

    @pytest.mark.asyncio
    async def test_auth_error_ends_early(self):
        reconnect = FlakyReconnect(10, error=AuthenticationError("denied"))
        with pytest.raises(RecoveryExhausted) as exc_info:
            await controller().run(reconnect)
        assert reconnect.calls == 1
        assert isinstance(exc_info.value.cause, AuthenticationError)

    @pytest.mark.asyncio
    async def test_time_budget_cuts_attempts(self):
        reconnect = FlakyReconnect(10)
        with pytest.raises(RecoveryExhausted):
            await controller(
                recovery_retries=10, recovery_backoff_ms=50, recovery_timeout_ms=120
            ).run(reconnect)
        assert reconnect.calls < 10

    @pytest.mark.asyncio
    async def test_hanging_reconnect_times_out(self):
        reconnect = FlakyReconnect(0, hang=5.0)
        with pytest.raises(RecoveryExhausted) as exc_info:
            await controller(recovery_retries=1, recovery_timeout_ms=50).run(reconnect)
        assert "timed out" in str(exc_info.value.cause)
