"""Shared fixtures for promptspeak-guard tests."""

from unittest.mock import MagicMock

import pytest

from promptspeak_guard.gatekeeper import (
    ExecuteResult,
    Gatekeeper,
    HoldRequest,
)
from promptspeak_guard.shared import reset_shared_gatekeeper


@pytest.fixture(autouse=True)
def _isolate_shared_gatekeeper():
    """Give every test a fresh shared engine."""
    reset_shared_gatekeeper()
    yield
    reset_shared_gatekeeper()


@pytest.fixture
def gatekeeper():
    """A dedicated engine with no background thread."""
    engine = Gatekeeper(enable_periodic_cleanup=False)
    yield engine
    engine.stop_periodic_cleanup()


@pytest.fixture
def hold_request():
    return HoldRequest(
        hold_id="hold_abc123",
        agent_id="agent-1",
        tool="transfer_funds",
        reason="Predicted drift 0.40 exceeds threshold 0.15",
    )


@pytest.fixture
def stub_engine():
    """An engine double that allows everything unless told otherwise."""
    engine = MagicMock()
    engine.execute.return_value = ExecuteResult.allow()
    return engine

