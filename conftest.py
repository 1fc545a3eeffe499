"""
Pytest configuration shared by the router tests.

Puts src/ on the import path and provides a controllable clock plus
fixtures that reset module-level singletons between tests.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent / "src"))

from routing.capabilities import reset_classifier  # noqa: E402


class FakeClock:
    """Monotonic clock that only moves when told to"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Controllable time source for circuit breakers and rate limiters"""
    return FakeClock()


@pytest.fixture(autouse=True)
def fresh_classifier():
    """Every test starts with a new global classifier"""
    reset_classifier()
    yield
    reset_classifier()
