"""
Recovery Controller.

Bounded-retry reconnect for a broken stream: up to ``recovery_retries``
attempts, ``recovery_backoff_ms`` apart, all of it inside
``recovery_timeout_ms``. The first attempt is immediate. With
``recovery_retries`` at 0 no reconnect is attempted and the first fault is
terminal. Authentication and schema errors end recovery early since another
attempt cannot fix them.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple

from config.config import StreamOptions
from core.errors.exceptions import PipelineError, RecoveryExhausted, wrap_transport_error
from core.logging.utilities import log_exception, log_with_context
from core.resilience.retry import RetryConfig, RetryStats
from stream_ingest import metrics
from stream_ingest.transport.base import TableStream

logger = logging.getLogger(__name__)

Reconnect = Callable[[], Awaitable[TableStream]]


class RecoveryController:
    def __init__(self, options: StreamOptions, table_name: str = ""):
        self.options = options
        self.table_name = table_name
        self.retry: RetryConfig = options.recovery_retry_config()

    @property
    def max_attempts(self) -> int:
        return self.retry.max_attempts

    async def run(self, reconnect: Reconnect) -> Tuple[TableStream, RetryStats]:
        """
        Reconnect until it succeeds or the attempt or time budget runs out.

        Raises:
            RecoveryExhausted: With the last error as its cause
        """
        loop = asyncio.get_running_loop()
        end = loop.time() + self.options.recovery_timeout_ms / 1000
        stats = RetryStats()
        last_error: Optional[PipelineError] = None

        for attempt in range(self.max_attempts):
            if attempt > 0:
                delay = self.retry.get_delay(attempt - 1)
                if loop.time() + delay >= end:
                    break
                stats.total_delay += delay
                await asyncio.sleep(delay)

            remaining = end - loop.time()
            if remaining <= 0:
                break

            stats.attempts = attempt + 1
            try:
                stream = await asyncio.wait_for(reconnect(), remaining)
            except asyncio.TimeoutError:
                last_error = wrap_transport_error(
                    TimeoutError(f"reconnect timed out after {remaining:.3f}s"), connect=True
                )
            except Exception as e:
                last_error = wrap_transport_error(e, connect=True)
            else:
                stats.success = True
                metrics.record_recovery(self.table_name, success=True)
                log_with_context(
                    logger,
                    logging.INFO,
                    "Stream recovered",
                    attempt=stats.attempts,
                    max_attempts=self.max_attempts,
                    duration_ms=round(stats.total_delay * 1000, 2),
                )
                return stream, stats

            stats.final_error = last_error
            log_exception(
                logger,
                last_error,
                "Reconnect attempt failed",
                level=logging.WARNING,
                include_traceback=False,
                attempt=stats.attempts,
                max_attempts=self.max_attempts,
            )
            if not self.retry.should_retry(last_error, attempt):
                break

        metrics.record_recovery(self.table_name, success=False)
        raise RecoveryExhausted(
            f"Stream recovery failed after {stats.attempts} attempt(s)",
            attempts=stats.attempts,
            cause=last_error,
        )


__all__ = ["RecoveryController", "Reconnect"]
