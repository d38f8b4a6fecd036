"""Tests for logging setup."""

import logging

import pytest

from core.logging.context import clear_log_context, get_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import NOISY_LOGGERS, setup_logging


def _our_handlers():
    return [h for h in logging.getLogger().handlers if h.get_name() == "stream_ingest_stdout"]


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    level = root.level
    yield
    for handler in _our_handlers():
        root.removeHandler(handler)
    root.setLevel(level)
    clear_log_context()


class TestSetupLogging:
    def test_installs_json_handler(self):
        setup_logging(level="DEBUG")
        handlers = _our_handlers()
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, JSONFormatter)
        assert logging.getLogger().level == logging.DEBUG

    def test_console_format(self):
        setup_logging(json_format=False)
        assert isinstance(_our_handlers()[0].formatter, ConsoleFormatter)

    def test_repeated_setup_replaces_handler(self):
        setup_logging()
        setup_logging()
        setup_logging(level=logging.WARNING)
        assert len(_our_handlers()) == 1
        assert logging.getLogger().level == logging.WARNING

    def test_suppresses_noisy_loggers(self):
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.NOTSET)
        setup_logging()
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_table_sets_context(self):
        setup_logging(table="main.default.events")
        assert get_log_context()["table"] == "main.default.events"

    def test_unknown_level(self):
        with pytest.raises(ValueError, match="Unknown log level"):
            setup_logging(level="LOUD")

    def test_returns_named_logger(self):
        assert setup_logging(name="ingest.test").name == "ingest.test"
