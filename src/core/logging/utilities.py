"""Logging utility functions."""

import logging
from typing import Any

# Reserved LogRecord attribute names that cannot be used in extra dict
_RESERVED_LOG_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "asctime",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields (item_id, sequence, duration_ms, etc.)
                  Note: exc_info=True is supported and handled specially.

    Example:
        log_with_context(
            logger, logging.INFO, "Batch complete",
            batch_size=10,
            records_failed=0,
            duration_ms=elapsed,
        )
    """
    # exc_info is a direct parameter to log(), not extra
    exc_info = kwargs.pop("exc_info", None)

    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    logger.log(level, msg, exc_info=exc_info, extra=extra)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Extracts error_category and error_kind from PipelineError subclasses
    and truncates long error messages.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: Context message
        level: Log level (default: ERROR)
        include_traceback: Include full traceback (default: True)
        **kwargs: Additional context fields

    Example:
        try:
            await session.close()
        except PipelineError as e:
            log_exception(logger, e, "Close failed", outstanding=n)
    """
    if kwargs.get("error_category") is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    kwargs.setdefault("error_kind", type(exc).__name__)

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg

    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=extra)
    else:
        logger.log(level, msg, extra=extra)


def format_batch_summary(
    batch_size: int,
    succeeded: int,
    failed: int,
    duration_ms: float | None = None,
    resubmitted: int = 0,
) -> str:
    """
    One-line human summary of a batch.

    Example:
        >>> format_batch_summary(10, 9, 1)
        'Batch: 10 records (succeeded=9, failed=1)'
        >>> format_batch_summary(10, 10, 0, 152.4, resubmitted=3)
        'Batch: 10 records (succeeded=10, failed=0, resubmitted=3) in 152ms'
    """
    parts = [f"succeeded={succeeded}", f"failed={failed}"]
    if resubmitted > 0:
        parts.append(f"resubmitted={resubmitted}")

    summary = f"Batch: {batch_size} records ({', '.join(parts)})"
    if duration_ms is not None:
        summary += f" in {duration_ms:.0f}ms"
    return summary
