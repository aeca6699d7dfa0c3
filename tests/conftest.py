"""Shared pytest fixtures for convoflow tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_dependency_singletons():
    """Drop lazily-built production wiring between tests.

    api.dependencies caches the bus and stores at module level; a bus left
    over from another test would leak published events and subscribers.
    """
    from convoflow.api import dependencies

    dependencies.reset()
    yield
    dependencies.reset()


@pytest.fixture(autouse=True)
def _inline_bus(monkeypatch):
    """Never talk to Pub/Sub from tests."""
    monkeypatch.setenv("BUS_BACKEND", "inline")
