"""Request and result types for the decision engine.

These types form the contract between the interception pipeline and a
decision engine. The pipeline builds an ExecuteRequest for every tool call
that survives the sensitive-data pre-check and classifies the ExecuteResult
it gets back.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
import uuid


class Severity(str, Enum):
    """Severity levels for drift alerts and holds."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class HoldDecision(str, Enum):
    """How a pending hold was resolved."""

    APPROVED = "approved"
    """Operator approved the held call; the host may re-issue it."""

    REJECTED = "rejected"
    """Operator rejected the held call."""

    EXPIRED = "expired"
    """Nobody resolved the hold before its timeout."""


@dataclass(frozen=True)
class ExecuteRequest:
    """A single tool call submitted to the engine.

    Attributes:
        agent_id: Identity of the calling agent
        frame: Policy-context label scoping which policy applies
        tool: Sanitized tool name
        arguments: The call's input mapping
    """

    agent_id: str
    frame: str
    tool: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "frame": self.frame,
            "tool": self.tool,
            "arguments": self.arguments,
        }


@dataclass(frozen=True)
class HoldRequest:
    """A call parked by the engine pending out-of-band resolution.

    Attributes:
        hold_id: Identifier used to resolve the hold
        agent_id: Agent that issued the call
        tool: Sanitized tool name
        arguments: The held call's arguments
        reason: Why the call was held
        created_at: ISO timestamp of when the hold was created
        expires_at: ISO timestamp after which the hold expires
        severity: How urgent the hold is
    """

    hold_id: str
    agent_id: str
    tool: str
    reason: str
    arguments: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    expires_at: Optional[str] = None
    severity: Severity = Severity.MEDIUM

    @classmethod
    def create(
        cls,
        request: ExecuteRequest,
        reason: str,
        timeout_ms: int,
        severity: Severity = Severity.MEDIUM,
    ) -> "HoldRequest":
        """Build a hold for a request with an expiry ``timeout_ms`` from now."""
        now = datetime.now(timezone.utc)
        expires = datetime.fromtimestamp(
            now.timestamp() + timeout_ms / 1000.0, tz=timezone.utc
        )
        return cls(
            hold_id=f"hold_{uuid.uuid4().hex[:12]}",
            agent_id=request.agent_id,
            tool=request.tool,
            arguments=dict(request.arguments),
            reason=reason,
            created_at=now.isoformat(),
            expires_at=expires.isoformat(),
            severity=severity,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "hold_id": self.hold_id,
            "agent_id": self.agent_id,
            "tool": self.tool,
            "arguments": self.arguments,
            "reason": self.reason,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "severity": self.severity.value,
        }


@dataclass(frozen=True)
class DriftAlert:
    """A deviation of an allowed call from the agent's baseline."""

    agent_id: str
    tool: str
    metric: str
    score: float
    threshold: float
    severity: Severity
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "tool": self.tool,
            "metric": self.metric,
            "score": self.score,
            "threshold": self.threshold,
            "severity": self.severity.value,
            "message": self.message,
        }


@dataclass(frozen=True)
class PreFlightCheck:
    """Drift prediction made before a call is allowed."""

    predicted_drift: float
    confidence: float
    reason: str = ""


@dataclass(frozen=True)
class PostAudit:
    """Baseline comparison made after a call is allowed."""

    drift_detected: bool
    drift_score: float = 0.0
    alerts: list[DriftAlert] = field(default_factory=list)


@dataclass(frozen=True)
class ExecuteResult:
    """The engine's response to an ExecuteRequest.

    Exactly one of three shapes is produced:
    - allowed: ``allowed=True``, optionally with a ``post_audit``
    - blocked: ``allowed=False``, ``held=False``, usually with an ``error``
    - held: ``allowed=False``, ``held=True`` with a ``hold_request``
    """

    allowed: bool
    held: bool = False
    hold_request: Optional[HoldRequest] = None
    error: Optional[str] = None
    post_audit: Optional[PostAudit] = None
    pre_flight: Optional[PreFlightCheck] = None

    @classmethod
    def allow(
        cls,
        post_audit: Optional[PostAudit] = None,
        pre_flight: Optional[PreFlightCheck] = None,
    ) -> "ExecuteResult":
        return cls(allowed=True, post_audit=post_audit, pre_flight=pre_flight)

    @classmethod
    def block(
        cls,
        error: str,
        pre_flight: Optional[PreFlightCheck] = None,
    ) -> "ExecuteResult":
        return cls(allowed=False, error=error, pre_flight=pre_flight)

    @classmethod
    def hold(
        cls,
        hold_request: HoldRequest,
        pre_flight: Optional[PreFlightCheck] = None,
    ) -> "ExecuteResult":
        return cls(
            allowed=False,
            held=True,
            hold_request=hold_request,
            pre_flight=pre_flight,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize the result for logging."""
        return {
            "allowed": self.allowed,
            "held": self.held,
            "hold_request": (
                self.hold_request.to_dict() if self.hold_request else None
            ),
            "error": self.error,
            "post_audit": (
                {
                    "drift_detected": self.post_audit.drift_detected,
                    "drift_score": self.post_audit.drift_score,
                    "alerts": [a.to_dict() for a in self.post_audit.alerts],
                }
                if self.post_audit
                else None
            ),
            "pre_flight": (
                {
                    "predicted_drift": self.pre_flight.predicted_drift,
                    "confidence": self.pre_flight.confidence,
                    "reason": self.pre_flight.reason,
                }
                if self.pre_flight
                else None
            ),
        }
