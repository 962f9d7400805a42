"""Batch generation guard.

The middleware wraps a text-generation step whose result may propose
several tool calls. Every proposed call is governed in its original order;
allowed calls stay in the result, the others are dropped and replaced by a
tagged notice appended to the generated text.

Hooks follow the host pipeline's names: ``transform_params`` before
generation, ``wrap_generate`` around a non-streaming generation and
``wrap_stream`` around a streaming one.
"""

import dataclasses
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Union

from pydantic import BaseModel

from promptspeak_guard.config import (
    PromptSpeakMiddlewareConfig,
    build_execution_control_config,
    resolve_config,
)
from promptspeak_guard.evaluator import (
    evaluate_call,
    generate_agent_id,
    notify,
    parse_tool_arguments,
)
from promptspeak_guard.events import Decision, GovernanceEvent
from promptspeak_guard.gatekeeper.base import DecisionEngine
from promptspeak_guard.gatekeeper.config import ExecutionControlConfig
from promptspeak_guard.gatekeeper.engine import Gatekeeper

logger = logging.getLogger(__name__)

NOTICE_TAG = "[PromptSpeak]"
PARAMS_KEY = "_promptSpeak"


@dataclass
class ToolCall:
    """A tool call proposed by a generation step."""

    tool_call_id: str
    tool_name: str
    args: Any = "{}"  # serialized JSON object
    tool_call_type: str = "function"


@dataclass
class GenerateResult:
    """Result of a non-streaming generation step."""

    text: Optional[str] = None
    tool_calls: Optional[list[ToolCall]] = None
    tool_results: Optional[list[Any]] = None
    finish_reason: Optional[str] = None
    usage: Optional[dict[str, int]] = None
    extra: dict[str, Any] = field(default_factory=dict)


def _field(obj: Any, *names: str) -> Any:
    """Read the first present field from a mapping or an object."""
    for name in names:
        if isinstance(obj, Mapping):
            if name in obj:
                return obj[name]
        elif hasattr(obj, name):
            return getattr(obj, name)
    return None


def _result_updates(
    result: Any,
    field_names: Iterable[str],
    tool_calls: list[Any],
    text: Optional[str],
) -> dict[str, Any]:
    """Map new tool calls and text onto the result's own field names."""
    names = set(field_names)
    calls_key = next((n for n in ("tool_calls", "toolCalls") if n in names), None)
    if calls_key is None:
        raise TypeError(
            f"{type(result).__name__} has no tool_calls or toolCalls field"
        )
    updates: dict[str, Any] = {calls_key: tool_calls}
    if "text" in names:
        updates["text"] = text
    elif text is not None:
        logger.warning(
            "Generation result has no text field, governance notices dropped",
            extra={"result_type": type(result).__name__},
        )
    return updates


def _with_updates(result: Any, tool_calls: list[Any], text: Optional[str]) -> Any:
    """Copy a generation result with new tool calls and text.

    Mappings, dataclasses and pydantic models are supported. Tool calls go
    to whichever of ``tool_calls``/``toolCalls`` the result carries; the
    text goes to ``text`` (a mapping gains the key when notices exist).

    Raises:
        TypeError: If the result is another type or has no tool-calls field
    """
    if isinstance(result, Mapping):
        updated = dict(result)
        calls_key = "toolCalls" if "toolCalls" in result else "tool_calls"
        updated[calls_key] = tool_calls
        if text is not None or "text" in result:
            updated["text"] = text
        return updated
    if dataclasses.is_dataclass(result) and not isinstance(result, type):
        names = [f.name for f in dataclasses.fields(result) if f.init]
        return dataclasses.replace(
            result, **_result_updates(result, names, tool_calls, text)
        )
    if isinstance(result, BaseModel):
        names = type(result).model_fields
        return result.model_copy(
            update=_result_updates(result, names, tool_calls, text)
        )
    raise TypeError(f"Unsupported generation result type: {type(result).__name__}")


def format_notice(tool_name: str, event: GovernanceEvent) -> str:
    """One-line notice for a call that was not allowed."""
    return f'{NOTICE_TAG} Tool "{tool_name}" {event.decision.value}: {event.reason}'


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class PromptSpeakMiddleware:
    """Governs the tool calls proposed by a generation step.

    One middleware instance represents one agent: every call it evaluates
    is tagged with the same agent identity and default frame.

    Example:
        middleware = prompt_speak_middleware(
            mode="strict",
            on_blocked=lambda event: print(event.reason),
        )
        params = middleware.transform_params({"prompt": "..."})
        result = await middleware.wrap_generate(
            lambda: model.generate(params), params
        )
    """

    def __init__(
        self,
        config: PromptSpeakMiddlewareConfig,
        engine: DecisionEngine,
        *,
        owns_engine: bool = False,
    ) -> None:
        self._config = config
        self._engine = engine
        self._owns_engine = owns_engine
        self.agent_id = config.agent_id or generate_agent_id("agent")
        self.execution_control_config: ExecutionControlConfig = (
            build_execution_control_config(config)
        )
        engine.set_execution_control_config(self.execution_control_config)

    @property
    def config(self) -> PromptSpeakMiddlewareConfig:
        return self._config

    @property
    def engine(self) -> DecisionEngine:
        return self._engine

    @property
    def mode(self) -> str:
        return self._config.mode.value

    def transform_params(self, params: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        """Stamp the governance context onto outgoing generation parameters.

        Caller-supplied fields are kept as they are.
        """
        return {
            **(params or {}),
            PARAMS_KEY: {
                "agentId": self.agent_id,
                "mode": self._config.mode.value,
                "driftThreshold": self._config.drift_threshold,
                "frame": self._config.default_frame,
            },
        }

    def evaluate_tool_call(
        self, tool_name: str, arguments: Mapping[str, Any]
    ) -> GovernanceEvent:
        """Govern one proposed call and dispatch its callbacks.

        Callback order: on_blocked or on_held for calls that were not
        allowed, on_drift for allowed calls with drift alerts, then
        on_decision for every call.
        """
        config = self._config
        event = evaluate_call(
            tool_name,
            arguments,
            agent_id=self.agent_id,
            frame=config.default_frame,
            engine=self._engine,
            sensitive_check=config.sensitive_data,
            event_prefix="psg",
        )

        if event.decision == Decision.HELD:
            notify(config.on_held, event.hold_request, name="on_held")
        elif event.decision == Decision.BLOCKED:
            notify(config.on_blocked, event, name="on_blocked")
        elif event.drift_alerts:
            notify(config.on_drift, event.drift_alerts, name="on_drift")

        notify(config.on_decision, event, name="on_decision")
        return event

    async def wrap_generate(
        self,
        do_generate: Callable[[], Union[Awaitable[Any], Any]],
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Run a generation step and drop the tool calls governance rejects.

        Args:
            do_generate: Callable producing the generation result
            params: The generation parameters (unused)

        Returns:
            A copy of the result holding only allowed tool calls, with one
            notice line per dropped call appended to its text
        """
        result = await _resolve(do_generate())

        tool_calls = _field(result, "tool_calls", "toolCalls")
        if not tool_calls:
            return result

        allowed_calls: list[Any] = []
        notices: list[str] = []

        for tool_call in tool_calls:
            tool_name = _field(tool_call, "tool_name", "toolName") or ""
            arguments = parse_tool_arguments(_field(tool_call, "args", "arguments"))

            event = self.evaluate_tool_call(tool_name, arguments)

            if event.decision == Decision.ALLOWED:
                allowed_calls.append(tool_call)
            else:
                notices.append(format_notice(tool_name, event))

        text = _field(result, "text")
        if notices:
            governance_note = "\n".join(notices)
            text = f"{text}\n\n{governance_note}" if text else governance_note

        logger.debug(
            "Governed generation tool calls",
            extra={
                "agent_id": self.agent_id,
                "proposed": len(tool_calls),
                "allowed": len(allowed_calls),
            },
        )
        return _with_updates(result, allowed_calls, text)

    async def wrap_stream(
        self,
        do_stream: Callable[[], Union[Awaitable[Any], Any]],
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Run a streaming generation step unchanged.

        Streamed tool calls are not inspected yet.
        """
        # TODO: buffer tool-call chunks and govern them like wrap_generate
        return await _resolve(do_stream())

    def close(self) -> None:
        """Stop the engine's background cleanup if this middleware created it."""
        if self._owns_engine:
            self._engine.stop_periodic_cleanup()

    def __repr__(self) -> str:
        return f"PromptSpeakMiddleware(agent_id={self.agent_id!r}, mode={self.mode!r})"


def prompt_speak_middleware(
    config: Union[PromptSpeakMiddlewareConfig, Mapping[str, Any], None] = None,
    *,
    gatekeeper: Optional[DecisionEngine] = None,
    **overrides: Any,
) -> PromptSpeakMiddleware:
    """Create a batch generation guard.

    A dedicated engine is created unless one is passed in. Either way the
    mode's execution-control policy is applied to it once, here.

    Args:
        config: A PromptSpeakMiddlewareConfig or a mapping of its fields
        gatekeeper: Engine to use instead of a new one
        **overrides: Individual config fields, applied over ``config``

    Raises:
        GovernanceConfigurationError: If the configuration does not validate
    """
    resolved = resolve_config(PromptSpeakMiddlewareConfig, config, overrides)
    if gatekeeper is not None:
        return PromptSpeakMiddleware(resolved, gatekeeper)
    return PromptSpeakMiddleware(
        resolved,
        Gatekeeper(enable_periodic_cleanup=False),
        owns_engine=True,
    )


def create_gatekeeper(
    config: Union[PromptSpeakMiddlewareConfig, Mapping[str, Any], None] = None,
    **overrides: Any,
) -> Gatekeeper:
    """Create an engine configured for a middleware mode.

    For callers who want raw ExecuteResults outside the guards.
    """
    resolved = resolve_config(PromptSpeakMiddlewareConfig, config, overrides)
    gatekeeper = Gatekeeper(enable_periodic_cleanup=False)
    gatekeeper.set_execution_control_config(build_execution_control_config(resolved))
    return gatekeeper
