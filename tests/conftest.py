"""
Pytest configuration and shared fixtures for machina tests.
"""
import pytest

from machina.kernel.scheduler import default_queue
from machina.kernel.settings import MachineSettings, reset_settings


@pytest.fixture(autouse=True)
def clean_runtime(monkeypatch):
    """Isolate each test from MACHINA_* variables and leftover deferrals."""
    for name in (
        "MACHINA_MAX_RECURSION",
        "MACHINA_EXTRA_ARGINS",
        "MACHINA_UNSAFE",
        "MACHINA_TRACK_DURATION",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    queue = default_queue()
    queue.run_until_idle()

    yield

    queue.run_until_idle()
    reset_settings()


@pytest.fixture
def settings():
    return MachineSettings()


@pytest.fixture
def outcomes():
    """Collects (exit, output) pairs from exec() continuations."""
    return []


@pytest.fixture
def record(outcomes):
    """Build a per-exit callback table that appends to `outcomes`."""

    def make(*exit_names):
        return {name: (lambda output, name=name: outcomes.append((name, output))) for name in exit_names}

    return make
