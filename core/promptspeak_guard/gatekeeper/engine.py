"""Reference decision engine.

The Gatekeeper decides individual tool calls for the interception
pipeline. It keeps a per-agent baseline of allowed tool usage and uses it
to:
- Predict drift before a call is allowed (and hold risky calls)
- Compare allowed calls against the baseline and raise drift alerts
- Halt agents whose drift becomes severe (circuit breaker)

Holds are parked until resolved or until the configured hold timeout
passes. Expired holds are purged on every call and, optionally, by a
background thread; only the most recent resolved decisions are kept.
"""

import fnmatch
import logging
import threading
from collections import Counter, OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from promptspeak_guard.exceptions import (
    GovernanceConfigurationError,
    HoldNotFoundError,
)
from promptspeak_guard.gatekeeper.config import ExecutionControlConfig
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

logger = logging.getLogger(__name__)

# Drift score cut-offs for alert severity, highest first
SEVERITY_LADDER = [
    (0.8, Severity.CRITICAL),
    (0.6, Severity.HIGH),
    (0.4, Severity.MEDIUM),
]


@dataclass
class AgentBaseline:
    """Per-agent usage baseline and circuit state.

    Attributes:
        tool_counts: How often each tool was allowed
        outcomes: Recent engine outcomes (True allowed, False blocked, None held)
        drift_score: Smoothed deviation of recent calls from the baseline
        halted: Whether the circuit breaker is open for this agent
        halt_reason: Why the agent was halted
    """

    window_size: int = 20
    tool_counts: Counter = field(default_factory=Counter)
    outcomes: deque = field(init=False, default_factory=deque)
    drift_score: float = 0.0
    halted: bool = False
    halt_reason: str = ""

    def __post_init__(self) -> None:
        self.outcomes = deque(maxlen=self.window_size)

    @property
    def total_allowed(self) -> int:
        return sum(self.tool_counts.values())

    @property
    def blocked_ratio(self) -> float:
        if not self.outcomes:
            return 0.0
        return self.outcomes.count(False) / len(self.outcomes)

    def record_allowed(self, tool: str) -> None:
        self.tool_counts[tool] += 1
        self.outcomes.append(True)

    def record_blocked(self) -> None:
        self.outcomes.append(False)

    def record_held(self, decay: float) -> None:
        """Count a held call as a neutral observation.

        It dilutes the blocked ratio and decays the drift score the way a
        baseline-conforming call does, so prediction recovers after a
        bounded number of holds.
        """
        self.outcomes.append(None)
        self.drift_score *= 1.0 - decay


def _severity_for(score: float) -> Severity:
    for cutoff, severity in SEVERITY_LADDER:
        if score >= cutoff:
            return severity
    return Severity.LOW


def _coerce_config(
    config: Union[ExecutionControlConfig, Mapping[str, Any]],
) -> ExecutionControlConfig:
    if isinstance(config, ExecutionControlConfig):
        return config.model_copy()
    try:
        return ExecutionControlConfig.model_validate(dict(config))
    except (ValidationError, TypeError, ValueError) as e:
        raise GovernanceConfigurationError(
            f"Invalid execution control config: {e}", cause=e
        ) from e


class Gatekeeper:
    """Decides tool calls against an execution-control policy.

    The engine is safe to share between guards and threads; all
    per-agent state is guarded by one lock.

    Example:
        gatekeeper = Gatekeeper(enable_periodic_cleanup=False)
        gatekeeper.set_execution_control_config(
            ExecutionControlConfig(hold_on_low_confidence=True)
        )
        result = gatekeeper.execute(
            ExecuteRequest(agent_id="agent-1", frame="⊕◊▶α", tool="read_file")
        )
        if result.held:
            print(result.hold_request.hold_id)
    """

    def __init__(
        self,
        *,
        enable_periodic_cleanup: bool = True,
        cleanup_interval_seconds: float = 60.0,
        forbidden_tools: Optional[list[str]] = None,
        baseline_min_samples: int = 5,
        window_size: int = 20,
        drift_smoothing: float = 0.3,
        resolved_hold_history: int = 1000,
        execution_control_config: Optional[
            Union[ExecutionControlConfig, Mapping[str, Any]]
        ] = None,
    ) -> None:
        """Initialize the Gatekeeper.

        Args:
            enable_periodic_cleanup: Start a daemon thread that purges expired holds
            cleanup_interval_seconds: Seconds between cleanup passes
            forbidden_tools: Glob patterns (fnmatch) of tools that are never allowed
            baseline_min_samples: Allowed calls needed before baseline comparison
            window_size: Number of recent outcomes used for drift prediction
            drift_smoothing: Weight of the latest call in the drift score
            resolved_hold_history: Resolved hold decisions kept for lookup
            execution_control_config: Initial policy (defaults apply otherwise)
        """
        if not 0.0 < drift_smoothing <= 1.0:
            raise GovernanceConfigurationError(
                f"drift_smoothing must be in (0, 1], got {drift_smoothing}"
            )
        self._config = (
            _coerce_config(execution_control_config)
            if execution_control_config is not None
            else ExecutionControlConfig()
        )
        self._forbidden_tools = list(forbidden_tools or [])
        self._baseline_min_samples = baseline_min_samples
        self._window_size = window_size
        self._drift_smoothing = drift_smoothing

        self._lock = threading.Lock()
        self._agents: dict[str, AgentBaseline] = {}
        self._pending_holds: dict[str, HoldRequest] = {}
        self._resolved_holds: OrderedDict[str, HoldDecision] = OrderedDict()
        self._resolved_hold_history = resolved_hold_history

        self._cleanup_interval = cleanup_interval_seconds
        self._stop_event = threading.Event()
        self._cleanup_thread: Optional[threading.Thread] = None
        if enable_periodic_cleanup:
            self._start_periodic_cleanup()

    # -- Configuration --

    def set_execution_control_config(
        self, config: Union[ExecutionControlConfig, Mapping[str, Any]]
    ) -> None:
        """Replace the execution-control policy.

        Args:
            config: A config model or a mapping of its fields

        Raises:
            GovernanceConfigurationError: If the mapping does not validate
        """
        resolved = _coerce_config(config)
        with self._lock:
            self._config = resolved
        logger.debug(
            "Execution control config updated",
            extra={"config": resolved.model_dump()},
        )

    def get_execution_control_config(self) -> ExecutionControlConfig:
        """Return a copy of the active policy."""
        with self._lock:
            return self._config.model_copy()

    @property
    def forbidden_tools(self) -> list[str]:
        return self._forbidden_tools.copy()

    # -- Decisions --

    def execute(self, request: ExecuteRequest) -> ExecuteResult:
        """Decide a single tool call.

        Checks run in order: request validation, circuit breaker,
        forbidden tools, MCP validation, pre-flight drift prediction,
        then post-audit baseline comparison for allowed calls.

        Args:
            request: The call to decide

        Returns:
            An allowed, blocked or held ExecuteResult
        """
        with self._lock:
            try:
                self._expire_holds(datetime.now(timezone.utc))
                result = self._evaluate(request)
            except Exception as e:
                logger.error(
                    "Gatekeeper evaluation failed",
                    extra={
                        "agent_id": request.agent_id,
                        "tool": request.tool,
                        "error": str(e),
                    },
                )
                # Engine faults result in a block
                result = ExecuteResult.block(f"Gatekeeper evaluation error: {e}")

        logger.debug(
            "Gatekeeper decision",
            extra={
                "agent_id": request.agent_id,
                "tool": request.tool,
                "allowed": result.allowed,
                "held": result.held,
            },
        )
        return result

    def _evaluate(self, request: ExecuteRequest) -> ExecuteResult:
        if not request.tool:
            return ExecuteResult.block("Tool name is required")

        config = self._config
        state = self._agents.get(request.agent_id)
        if state is None:
            state = AgentBaseline(window_size=self._window_size)
            self._agents[request.agent_id] = state

        if config.enable_circuit_breaker_check and state.halted:
            return ExecuteResult.block(
                f"Circuit breaker open for agent '{request.agent_id}': "
                f"{state.halt_reason}"
            )

        pattern = self._match_forbidden(request.tool)
        if pattern is not None:
            reason = f"Tool '{request.tool}' matches forbidden pattern '{pattern}'"
            if config.hold_on_forbidden_with_override:
                return self._hold(
                    request,
                    f"{reason}; override required",
                    config.hold_timeout_ms,
                    severity=Severity.HIGH,
                )
            state.record_blocked()
            return ExecuteResult.block(reason)

        if (
            config.enable_mcp_validation
            and request.tool not in config.mcp_validation_tools
        ):
            state.record_blocked()
            return ExecuteResult.block(
                f"Tool '{request.tool}' failed MCP validation"
            )

        pre_flight: Optional[PreFlightCheck] = None
        if config.enable_pre_flight_drift_prediction:
            pre_flight = self._predict(state)
            hold_reason: Optional[str] = None
            if (
                config.hold_on_drift_prediction
                and pre_flight.predicted_drift > config.drift_prediction_threshold
            ):
                hold_reason = (
                    f"Predicted drift {pre_flight.predicted_drift:.2f} exceeds "
                    f"threshold {config.drift_prediction_threshold:.2f}"
                )
            elif (
                config.hold_on_low_confidence
                and pre_flight.confidence < config.low_confidence_threshold
            ):
                hold_reason = (
                    f"Confidence {pre_flight.confidence:.2f} below "
                    f"{config.low_confidence_threshold:.2f}"
                )
            if hold_reason is not None:
                state.record_held(self._drift_smoothing)
                return self._hold(
                    request,
                    hold_reason,
                    config.hold_timeout_ms,
                    pre_flight=pre_flight,
                )

        post_audit: Optional[PostAudit] = None
        if config.enable_baseline_comparison:
            post_audit = self._audit(request, state, config)
        state.record_allowed(request.tool)

        return ExecuteResult.allow(post_audit=post_audit, pre_flight=pre_flight)

    def _match_forbidden(self, tool: str) -> Optional[str]:
        for pattern in self._forbidden_tools:
            if fnmatch.fnmatch(tool, pattern):
                return pattern
        return None

    def _predict(self, state: AgentBaseline) -> PreFlightCheck:
        predicted = max(state.drift_score, state.blocked_ratio)
        if predicted == 0.0:
            reason = "No drift history"
        elif state.blocked_ratio >= state.drift_score:
            reason = f"{state.blocked_ratio:.0%} of recent calls were blocked"
        else:
            reason = f"Recent calls deviate from baseline ({state.drift_score:.2f})"
        return PreFlightCheck(
            predicted_drift=predicted,
            confidence=1.0 - predicted,
            reason=reason,
        )

    def _audit(
        self,
        request: ExecuteRequest,
        state: AgentBaseline,
        config: ExecutionControlConfig,
    ) -> PostAudit:
        if state.total_allowed < self._baseline_min_samples:
            return PostAudit(drift_detected=False, drift_score=state.drift_score)

        most_used = max(state.tool_counts.values())
        deviation = 1.0 - state.tool_counts.get(request.tool, 0) / most_used
        state.drift_score = (
            (1.0 - self._drift_smoothing) * state.drift_score
            + self._drift_smoothing * deviation
        )

        alerts: list[DriftAlert] = []
        if deviation > config.baseline_deviation_threshold:
            severity = _severity_for(state.drift_score)
            alerts.append(DriftAlert(
                agent_id=request.agent_id,
                tool=request.tool,
                metric="baseline_deviation",
                score=deviation,
                threshold=config.baseline_deviation_threshold,
                severity=severity,
                message=(
                    f"Tool '{request.tool}' deviates from baseline "
                    f"({deviation:.2f} > {config.baseline_deviation_threshold:.2f})"
                ),
            ))
            should_halt = (
                (severity == Severity.CRITICAL and config.halt_on_critical_drift)
                or (severity == Severity.HIGH and config.halt_on_high_drift)
            )
            if should_halt:
                state.halted = True
                state.halt_reason = f"{severity.value} drift on '{request.tool}'"
                logger.warning(
                    "Agent halted on drift",
                    extra={
                        "agent_id": request.agent_id,
                        "tool": request.tool,
                        "severity": severity.value,
                        "drift_score": state.drift_score,
                    },
                )

        return PostAudit(
            drift_detected=bool(alerts),
            drift_score=state.drift_score,
            alerts=alerts,
        )

    def _hold(
        self,
        request: ExecuteRequest,
        reason: str,
        timeout_ms: int,
        *,
        severity: Severity = Severity.MEDIUM,
        pre_flight: Optional[PreFlightCheck] = None,
    ) -> ExecuteResult:
        hold = HoldRequest.create(request, reason, timeout_ms, severity=severity)
        self._pending_holds[hold.hold_id] = hold
        logger.info(
            "Tool call held",
            extra={
                "hold_id": hold.hold_id,
                "agent_id": request.agent_id,
                "tool": request.tool,
                "reason": reason,
            },
        )
        return ExecuteResult.hold(hold, pre_flight=pre_flight)

    # -- Holds --

    def get_pending_holds(self, agent_id: Optional[str] = None) -> list[HoldRequest]:
        """List pending holds, optionally for one agent."""
        with self._lock:
            return [
                hold for hold in self._pending_holds.values()
                if agent_id is None or hold.agent_id == agent_id
            ]

    def get_hold_decision(self, hold_id: str) -> Optional[HoldDecision]:
        """Return how a hold was resolved, or None while it is pending."""
        with self._lock:
            return self._resolved_holds.get(hold_id)

    def resolve_hold(
        self, hold_id: str, decision: Union[HoldDecision, str]
    ) -> HoldRequest:
        """Resolve a pending hold.

        Approving a hold folds the tool into the agent's baseline and
        clears its drift score. Rejecting it counts as a blocked call.

        Args:
            hold_id: Identifier from the HoldRequest
            decision: approved or rejected

        Returns:
            The resolved HoldRequest

        Raises:
            HoldNotFoundError: If the hold is not pending
        """
        decision = HoldDecision(decision)
        with self._lock:
            hold = self._pending_holds.pop(hold_id, None)
            if hold is None:
                raise HoldNotFoundError(hold_id)
            self._record_decision(hold_id, decision)

            state = self._agents.get(hold.agent_id)
            if state is not None:
                if decision == HoldDecision.APPROVED:
                    state.record_allowed(hold.tool)
                    state.drift_score = 0.0
                elif decision == HoldDecision.REJECTED:
                    state.record_blocked()

        logger.info(
            "Hold resolved",
            extra={"hold_id": hold_id, "decision": decision.value},
        )
        return hold

    def cleanup_expired_holds(self, now: Optional[datetime] = None) -> int:
        """Expire holds whose timeout has passed.

        ``execute`` runs the same pass on every call, so holds expire even
        without the background thread.

        Returns:
            Number of holds expired
        """
        with self._lock:
            return self._expire_holds(now or datetime.now(timezone.utc))

    def _expire_holds(self, now: datetime) -> int:
        expired = 0
        for hold_id, hold in list(self._pending_holds.items()):
            if hold.expires_at is None:
                continue
            if datetime.fromisoformat(hold.expires_at) <= now:
                del self._pending_holds[hold_id]
                self._record_decision(hold_id, HoldDecision.EXPIRED)
                expired += 1
        if expired:
            logger.debug("Expired holds", extra={"count": expired})
        return expired

    def _record_decision(self, hold_id: str, decision: HoldDecision) -> None:
        self._resolved_holds[hold_id] = decision
        while len(self._resolved_holds) > self._resolved_hold_history:
            self._resolved_holds.popitem(last=False)

    # -- Agents --

    def reset_agent(self, agent_id: str) -> None:
        """Forget an agent's baseline and close its circuit breaker."""
        with self._lock:
            self._agents.pop(agent_id, None)

    def is_halted(self, agent_id: str) -> bool:
        with self._lock:
            state = self._agents.get(agent_id)
            return bool(state and state.halted)

    # -- Lifecycle --

    def _start_periodic_cleanup(self) -> None:
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop,
            name="gatekeeper-cleanup",
            daemon=True,
        )
        self._cleanup_thread.start()

    def _cleanup_loop(self) -> None:
        while not self._stop_event.wait(self._cleanup_interval):
            try:
                self.cleanup_expired_holds()
            except Exception as e:
                logger.warning(
                    "Hold cleanup failed",
                    extra={"error": str(e)},
                )

    def stop_periodic_cleanup(self) -> None:
        """Stop the background cleanup thread. Safe to call more than once."""
        self._stop_event.set()
        thread = self._cleanup_thread
        if thread is not None and thread.is_alive():
            thread.join(timeout=self._cleanup_interval)
        self._cleanup_thread = None

    def __repr__(self) -> str:
        return (
            f"Gatekeeper(agents={len(self._agents)}, "
            f"pending_holds={len(self._pending_holds)})"
        )
