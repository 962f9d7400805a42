"""Governance event types.

A GovernanceEvent is the immutable audit record of one decision. A
GovernanceInterception is what a guarded tool returns in place of its real
result when the call is not allowed.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from promptspeak_guard.gatekeeper.types import DriftAlert, ExecuteResult, HoldRequest


class Decision(str, Enum):
    """Outcome of governing a single tool call."""

    ALLOWED = "allowed"
    """The call may run."""

    BLOCKED = "blocked"
    """The call is rejected and never runs."""

    HELD = "held"
    """The call is parked pending out-of-band resolution."""


@dataclass(frozen=True)
class GovernanceEvent:
    """Immutable record of one governance decision.

    Attributes:
        event_id: Unique identifier for this event
        tool: Sanitized tool name
        arguments: The call's input mapping
        decision: allowed, blocked or held
        reason: Human-readable explanation
        agent_id: Identity of the calling agent
        frame: Policy-context label the call was evaluated under
        timestamp: ISO-formatted time the decision was made
        execute_result: Raw engine response (absent for sensitive-data blocks)
        hold_request: The engine's hold, present only for held decisions
        drift_alerts: Alerts reported for an allowed call, if any
        drift_score: Post-audit drift score of an allowed call, with or without alerts
    """

    event_id: str
    tool: str
    arguments: dict[str, Any]
    decision: Decision
    reason: str
    agent_id: str
    frame: str
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    execute_result: Optional[ExecuteResult] = None
    hold_request: Optional[HoldRequest] = None
    drift_alerts: Optional[list[DriftAlert]] = None
    drift_score: Optional[float] = None

    def __post_init__(self) -> None:
        """Reject events whose optional fields contradict the decision."""
        if (self.decision == Decision.HELD) != (self.hold_request is not None):
            raise ValueError("hold_request must be present iff decision is held")
        if self.drift_alerts is not None:
            if self.decision != Decision.ALLOWED:
                raise ValueError("drift_alerts are only attached to allowed decisions")
            if not self.drift_alerts:
                raise ValueError("drift_alerts must not be empty when attached")

    @property
    def allowed(self) -> bool:
        return self.decision == Decision.ALLOWED

    def to_dict(self) -> dict[str, Any]:
        """Serialize the event to a dictionary.

        Returns:
            Dictionary representation suitable for logging/storage
        """
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp,
            "tool": self.tool,
            "arguments": self.arguments,
            "decision": self.decision.value,
            "reason": self.reason,
            "agent_id": self.agent_id,
            "frame": self.frame,
            "execute_result": (
                self.execute_result.to_dict() if self.execute_result else None
            ),
            "hold_request": (
                self.hold_request.to_dict() if self.hold_request else None
            ),
            "drift_alerts": (
                [alert.to_dict() for alert in self.drift_alerts]
                if self.drift_alerts
                else None
            ),
            "drift_score": self.drift_score,
        }


@dataclass(frozen=True)
class GovernanceInterception:
    """Returned in place of a tool result when a call is not allowed.

    Never carries the call's arguments or the tool's result.
    """

    held: bool
    reason: str
    hold_id: Optional[str] = None
    suggestion: Optional[str] = None
    allowed: bool = field(default=False, init=False)

    @classmethod
    def from_event(cls, event: GovernanceEvent) -> "GovernanceInterception":
        """Build the interception for a blocked or held event."""
        if event.decision == Decision.ALLOWED:
            raise ValueError("Allowed events do not produce an interception")
        held = event.decision == Decision.HELD
        return cls(
            held=held,
            reason=event.reason,
            hold_id=event.hold_request.hold_id if held and event.hold_request else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "allowed": self.allowed,
            "held": self.held,
            "reason": self.reason,
        }
        if self.hold_id is not None:
            data["hold_id"] = self.hold_id
        if self.suggestion is not None:
            data["suggestion"] = self.suggestion
        return data
