"""
pytest configuration for queued_api tests.

Adds src directory to Python path for imports.
"""

import logging
import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_logger():
    """Isolated logger that propagates to caplog."""
    logger = logging.getLogger("queued_api.tests")
    logger.setLevel(logging.DEBUG)
    return logger
