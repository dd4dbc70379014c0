"""
Shared fixtures for TierVault tests.
"""

import os
import tempfile

import pytest

from tiering.tiervault.cold import InMemoryColdStore
from tiering.tiervault.deadletter import DeadLetterSink
from tiering.tiervault.hot import InMemoryHotStore
from tiering.tiervault.state import ControlStore, TaskLedger


@pytest.fixture
async def control():
    """Control store in a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = ControlStore(os.path.join(tmpdir, "control.db"))
        await store.initialize()
        yield store


@pytest.fixture
def ledger(control):
    return TaskLedger(control)


@pytest.fixture
def sink(control):
    return DeadLetterSink(control)


@pytest.fixture
def hot():
    return InMemoryHotStore()


@pytest.fixture
def cold():
    return InMemoryColdStore()
