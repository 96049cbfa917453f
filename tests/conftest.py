"""Pytest configuration."""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# Always run with mock collaborators for tests
os.environ["STEMTRACK_MOCK"] = "1"


class FakeClock:
    """Manually advanced clock for freshness tests."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
