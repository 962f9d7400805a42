"""Decision engine and sensitive-data classifier.

The interception pipeline consumes these through the DecisionEngine
protocol and the SensitiveDataClassifier callable type; Gatekeeper and
contains_sensitive_data are the bundled implementations.
"""

from promptspeak_guard.gatekeeper.base import DecisionEngine
from promptspeak_guard.gatekeeper.config import (
    DEFAULT_HOLD_TIMEOUT_MS,
    ExecutionControlConfig,
)
from promptspeak_guard.gatekeeper.engine import AgentBaseline, Gatekeeper
from promptspeak_guard.gatekeeper.sensitive import (
    SENSITIVE_PATTERNS,
    SensitiveDataClassifier,
    contains_sensitive_data,
    find_sensitive_data,
)
from promptspeak_guard.gatekeeper.types import (
    DriftAlert,
    ExecuteRequest,
    ExecuteResult,
    HoldDecision,
    HoldRequest,
    PostAudit,
    PreFlightCheck,
    Severity,
)

__all__ = [
    # Engine
    "DecisionEngine",
    "Gatekeeper",
    "AgentBaseline",
    "ExecutionControlConfig",
    "DEFAULT_HOLD_TIMEOUT_MS",
    # Contract types
    "ExecuteRequest",
    "ExecuteResult",
    "HoldRequest",
    "HoldDecision",
    "DriftAlert",
    "PostAudit",
    "PreFlightCheck",
    "Severity",
    # Classifier
    "SensitiveDataClassifier",
    "SENSITIVE_PATTERNS",
    "contains_sensitive_data",
    "find_sensitive_data",
]
