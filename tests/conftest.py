"""
Pytest configuration and fixtures for the pool agent tests.

This conftest.py provides shared fixtures and hooks for all tests.
"""
import pytest

from infra.metrics import MetricsRecorder
from infra.state_store import StateStore
from tests.helpers import FakeClock, FakeGateway


@pytest.fixture(autouse=True)
def reset_singletons():
    """
    Reset the metrics singleton between tests to ensure test isolation.

    This is applied automatically to all tests (autouse=True).
    """
    # Reset BEFORE test (cleanup from previous test pollution)
    MetricsRecorder._reset_for_testing()
    yield
    MetricsRecorder._reset_for_testing()


@pytest.fixture
def store(tmp_path):
    return StateStore(state_file=str(tmp_path / "state.json"))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    return MetricsRecorder(enabled=False)
