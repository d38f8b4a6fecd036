"""Logging setup and configuration."""

import logging
import sys

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LEVEL = logging.INFO

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "asyncio",
    "botocore",
    "urllib3",
    "grpc",
    "google.protobuf",
]

_HANDLER_NAME = "stream_ingest_stdout"


def _resolve_level(level: int | str) -> int:
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        return resolved
    return level


def setup_logging(
    name: str = "stream_ingest",
    level: int | str = DEFAULT_LEVEL,
    json_format: bool = True,
    suppress_noisy: bool = True,
    table: str | None = None,
) -> logging.Logger:
    """
    Configure stdout logging for a serverless execution environment.

    The host captures stdout, so there is exactly one handler and no files.
    Calling this again (warm containers re-run module init in tests) replaces
    the handler instead of stacking duplicates.

    Args:
        name: Logger name returned to the caller
        level: Root level (int or name such as "DEBUG")
        json_format: One JSON object per line (default) or console format
        suppress_noisy: Quiet down SDK and transport loggers
        table: Target table, added to every line as context

    Returns:
        Configured logger instance
    """
    if table:
        set_log_context(table=table)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(_resolve_level(level))
    for existing in list(root_logger.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(
        "Logging initialized",
        extra={"operation": "setup_logging"},
    )
    return logger

