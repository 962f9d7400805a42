"""Decision core shared by both guards.

evaluate_call turns one tool call into exactly one GovernanceEvent:

1. Optional sensitive-data pre-check (blocks without consulting the engine)
2. Delegation to the decision engine with a sanitized tool name
3. Classification of the engine's response into allowed, blocked or held

Callback dispatch is left to the guards so each can apply its own policy;
``notify`` is the shared helper they use for it.
"""

import asyncio
import inspect
import itertools
import json
import logging
import re
import time
import uuid
from typing import Any, Callable, Mapping, Optional

from promptspeak_guard.events import Decision, GovernanceEvent
from promptspeak_guard.gatekeeper.base import DecisionEngine
from promptspeak_guard.gatekeeper.sensitive import (
    SensitiveDataClassifier,
    contains_sensitive_data,
)
from promptspeak_guard.gatekeeper.types import ExecuteRequest

logger = logging.getLogger(__name__)

MAX_TOOL_NAME_LENGTH = 64
UNNAMED_TOOL = "unnamed_tool"

SENSITIVE_DATA_REASON = "Sensitive data detected in tool arguments"
DEFAULT_BLOCK_REASON = "Blocked by governance pipeline"
ALLOWED_REASON = "Passed governance pipeline"

_UNSAFE_TOOL_CHARS = re.compile(r"[^a-zA-Z0-9_]")
_event_counter = itertools.count(1)
_pending_callbacks: set[asyncio.Future] = set()


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_event_id(prefix: str = "psg") -> str:
    """Generate a unique, roughly time-ordered event ID."""
    return f"{prefix}_{_now_ms()}_{next(_event_counter)}"


def generate_agent_id(prefix: str = "agent") -> str:
    """Generate an agent identity for a guard that was not given one."""
    return f"{prefix}_{_now_ms()}_{uuid.uuid4().hex[:6]}"


def sanitize_tool_name(name: Optional[str]) -> str:
    """Replace characters outside [A-Za-z0-9_] and truncate to 64 characters."""
    if not name:
        return UNNAMED_TOOL
    return _UNSAFE_TOOL_CHARS.sub("_", name)[:MAX_TOOL_NAME_LENGTH]


def serialize_arguments(arguments: Mapping[str, Any]) -> str:
    """Canonical text form of a call's arguments for the classifier."""
    return json.dumps(arguments, sort_keys=True, default=str, ensure_ascii=False)


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Parse a tool call's serialized argument payload.

    Malformed or non-object payloads yield an empty mapping so the rest of
    a batch can still be evaluated.
    """
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.debug(
            "Unparseable tool call arguments, using empty arguments",
            extra={"error": str(e)},
        )
        return {}
    if not isinstance(parsed, dict):
        logger.debug(
            "Tool call arguments are not an object, using empty arguments",
            extra={"type": type(parsed).__name__},
        )
        return {}
    return parsed


def evaluate_call(
    tool_name: str,
    arguments: Mapping[str, Any],
    *,
    agent_id: str,
    frame: str,
    engine: DecisionEngine,
    sensitive_check: bool = True,
    classifier: SensitiveDataClassifier = contains_sensitive_data,
    event_prefix: str = "psg",
) -> GovernanceEvent:
    """Evaluate a single tool call and return its governance event.

    Args:
        tool_name: Name of the tool being called (sanitized here)
        arguments: The call's input mapping
        agent_id: Identity of the calling agent
        frame: Policy-context label
        engine: Decision engine consulted for non-sensitive calls
        sensitive_check: Run the sensitive-data pre-check first
        classifier: Sensitive-data classifier used by the pre-check
        event_prefix: Prefix for generated event IDs

    Returns:
        A GovernanceEvent whose decision is allowed, blocked or held
    """
    tool = sanitize_tool_name(tool_name)
    args = dict(arguments)

    if sensitive_check and classifier(serialize_arguments(args)):
        event = GovernanceEvent(
            event_id=generate_event_id(event_prefix),
            tool=tool,
            arguments=args,
            decision=Decision.BLOCKED,
            reason=SENSITIVE_DATA_REASON,
            agent_id=agent_id,
            frame=frame,
        )
        _log_decision(event)
        return event

    result = engine.execute(
        ExecuteRequest(agent_id=agent_id, frame=frame, tool=tool, arguments=args)
    )

    if result.held and result.hold_request is not None:
        event = GovernanceEvent(
            event_id=generate_event_id(event_prefix),
            tool=tool,
            arguments=args,
            decision=Decision.HELD,
            reason=result.hold_request.reason,
            agent_id=agent_id,
            frame=frame,
            execute_result=result,
            hold_request=result.hold_request,
        )
    elif not result.allowed:
        event = GovernanceEvent(
            event_id=generate_event_id(event_prefix),
            tool=tool,
            arguments=args,
            decision=Decision.BLOCKED,
            reason=result.error or DEFAULT_BLOCK_REASON,
            agent_id=agent_id,
            frame=frame,
            execute_result=result,
        )
    else:
        audit = result.post_audit
        drifted = audit is not None and audit.drift_detected and len(audit.alerts) > 0
        event = GovernanceEvent(
            event_id=generate_event_id(event_prefix),
            tool=tool,
            arguments=args,
            decision=Decision.ALLOWED,
            reason=ALLOWED_REASON,
            agent_id=agent_id,
            frame=frame,
            execute_result=result,
            drift_alerts=list(audit.alerts) if drifted else None,
            drift_score=audit.drift_score if audit is not None else None,
        )

    _log_decision(event)
    return event


def _log_decision(event: GovernanceEvent) -> None:
    level = logging.DEBUG if event.decision == Decision.ALLOWED else logging.INFO
    logger.log(
        level,
        "Governance decision",
        extra={
            "event_id": event.event_id,
            "tool": event.tool,
            "decision": event.decision.value,
            "reason": event.reason,
            "agent_id": event.agent_id,
        },
    )


def notify(callback: Optional[Callable[[Any], Any]], payload: Any, *, name: str) -> None:
    """Invoke an optional lifecycle callback.

    Handlers run synchronously in the order the guard calls them. A handler
    that raises is logged and does not stop the pipeline. Coroutine
    handlers are scheduled on the running loop without being awaited.
    """
    if callback is None:
        return
    try:
        outcome = callback(payload)
    except Exception:
        logger.warning(
            "Governance callback failed",
            extra={"callback": name},
            exc_info=True,
        )
        return

    if inspect.isawaitable(outcome):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "Coroutine callback dropped, no running event loop",
                extra={"callback": name},
            )
            if inspect.iscoroutine(outcome):
                outcome.close()
            return
        future = asyncio.ensure_future(outcome, loop=loop)
        _pending_callbacks.add(future)
        future.add_done_callback(lambda f: _finish_callback(f, name))


def _finish_callback(future: asyncio.Future, name: str) -> None:
    _pending_callbacks.discard(future)
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.warning(
            "Governance callback failed",
            extra={"callback": name},
            exc_info=error,
        )
