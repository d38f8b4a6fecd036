"""Context managers for structured logging."""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from core.logging.context import CONTEXT_FIELDS, get_log_context, set_log_context
from core.logging.utilities import log_exception, log_with_context


class LogContext:
    """
    Binds log context fields for the duration of a block.

    Only the fields passed (and not None) are changed, and only those are
    put back on exit.

    Usage:
        with LogContext(request_id=ctx.aws_request_id, table=table_name):
            outcome = runtime.process(events, deadline)
    """

    def __init__(self, **fields: Optional[str]):
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        self.fields = {k: v for k, v in fields.items() if v is not None}
        self._saved: Dict[str, str] = {}

    def __enter__(self) -> "LogContext":
        current = get_log_context()
        self._saved = {k: current[k] for k in self.fields}
        set_log_context(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_log_context(**self._saved)
        return False


@contextmanager
def log_phase(
    logger: logging.Logger,
    phase: str,
    level: int = logging.DEBUG,
    **context: Any,
):
    """
    Time one phase of a batch and log when it ends, even on error.

    Example:
        with log_phase(logger, "encode", batch_size=len(events)):
            encoded = [encoder.encode(e) for e in events]
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    start = time.perf_counter()
    try:
        yield
    finally:
        log_with_context(
            logger,
            level,
            f"Phase complete: {phase}",
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
            **context,
        )


class StreamOperation:
    """
    Times one stream lifecycle step (handshake, resubmit, close).

    On success one INFO line carries the operation name, its duration and
    whatever counters were added along the way. A step that ran longer than
    ``budget_ms`` is logged at WARNING instead. An exception is logged with
    its error category and propagates unchanged.

    Usage:
        with StreamOperation(logger, "resubmit", generation=2) as op:
            for submission in outstanding:
                ...
                op.add_context(records_resubmitted=n)
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        budget_ms: Optional[float] = None,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.budget_ms = budget_ms
        self.context = context
        self._start: Optional[float] = None

    @property
    def elapsed_ms(self) -> float:
        if self._start is None:
            return 0.0
        return (time.perf_counter() - self._start) * 1000

    def add_context(self, **fields: Any) -> None:
        self.context.update(fields)

    def __enter__(self) -> "StreamOperation":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = round(self.elapsed_ms, 2)
        if exc_val is not None:
            log_exception(
                self.logger,
                exc_val,
                f"Stream {self.operation} failed",
                include_traceback=False,
                operation=self.operation,
                duration_ms=duration_ms,
                **self.context,
            )
            return False

        level = logging.INFO
        if self.budget_ms is not None and duration_ms > self.budget_ms:
            level = logging.WARNING
        log_with_context(
            self.logger,
            level,
            f"Stream {self.operation} complete",
            operation=self.operation,
            duration_ms=duration_ms,
            **self.context,
        )
        return False
