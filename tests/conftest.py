"""
pytest configuration for stream ingest tests.

Adds src directory to Python path for imports and provides shared fixtures.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from config.config import reset_config  # noqa: E402
from core.logging.context import clear_log_context  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_globals():
    """Every test starts without cached config or log context."""
    reset_config()
    clear_log_context()
    yield
    reset_config()
    clear_log_context()
