# tests/conftest.py
"""
Pytest configuration and shared fixtures for promtree tests.

Provides:
- A controllable clock for gauge expiry and trigger interval tests
- Fresh root collectors (plain, namespaced and labelled)
"""

from __future__ import annotations

import pytest

from promtree import create_collector


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at t=1000s."""
    return FakeClock()


@pytest.fixture
def root(clock):
    """Root collector without namespace or labels."""
    return create_collector(clock=clock)


@pytest.fixture
def app_root(clock):
    """Root collector with namespace 'app' and a 'service' label."""
    return create_collector(namespace="app", labels={"service": "api"}, clock=clock)
