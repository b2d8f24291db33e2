"""Pytest configuration for GUI test suite."""

import time

import pytest

pytestmark = pytest.mark.gui


@pytest.fixture
def pump_until():
    """Return a helper that runs the wx event loop until *predicate* holds."""

    wx = pytest.importorskip("wx")

    def _pump(predicate, timeout: float = 2.0) -> bool:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                return False
            wx.MilliSleep(5)
            wx.SafeYield(None, True)
        return True

    return _pump
