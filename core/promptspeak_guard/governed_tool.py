"""Single-call guard.

governed_tool wraps one tool so that every invocation of its ``execute``
is governed individually. Allowed calls run the real tool and return its
result unchanged; blocked and held calls never reach the tool and return a
GovernanceInterception instead.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union

from promptspeak_guard.config import GovernedToolConfig, resolve_config
from promptspeak_guard.evaluator import (
    evaluate_call,
    generate_agent_id,
    notify,
    sanitize_tool_name,
)
from promptspeak_guard.events import Decision, GovernanceEvent, GovernanceInterception
from promptspeak_guard.exceptions import ToolConfigurationError
from promptspeak_guard.gatekeeper.base import DecisionEngine
from promptspeak_guard.shared import get_shared_gatekeeper

logger = logging.getLogger(__name__)


@dataclass
class AiTool:
    """A tool in the shape agent frameworks hand to a model."""

    description: Optional[str] = None
    parameters: Any = None
    execute: Optional[Callable[..., Any]] = None
    name: Optional[str] = None


def _tool_attr(tool: Any, name: str) -> Any:
    if isinstance(tool, Mapping):
        return tool.get(name)
    return getattr(tool, name, None)


class GovernedTool:
    """A tool whose ``execute`` is routed through governance.

    Every attribute other than ``execute`` is read from the wrapped tool,
    so descriptions, parameter schemas and extension fields stay visible
    on the wrapper unchanged.

    Example:
        search = governed_tool(
            AiTool(description="web search", execute=run_search),
            sensitive_data_check=True,
            on_blocked=lambda event: audit_log.append(event),
        )
        result = await search.execute({"query": "weather"})
        if isinstance(result, GovernanceInterception):
            ...
    """

    def __init__(
        self,
        tool: Any,
        config: GovernedToolConfig,
        engine: DecisionEngine,
    ) -> None:
        self._tool = tool
        self._config = config
        self._engine = engine
        self.agent_id = config.agent_id or generate_agent_id("tool_agent")
        label = (
            config.tool_name
            or _tool_attr(tool, "name")
            or _tool_attr(tool, "description")
        )
        self.tool_name = sanitize_tool_name(label if isinstance(label, str) else None)
        self.last_event: Optional[GovernanceEvent] = None

    @property
    def wrapped(self) -> Any:
        """The original, unwrapped tool."""
        return self._tool

    @property
    def config(self) -> GovernedToolConfig:
        return self._config

    @property
    def engine(self) -> DecisionEngine:
        return self._engine

    @property
    def frame(self) -> str:
        return self._config.frame

    async def execute(
        self,
        args: Mapping[str, Any],
        options: Any = None,
    ) -> Union[Any, GovernanceInterception]:
        """Govern one invocation and run the tool if it is allowed.

        Args:
            args: Arguments for the tool
            options: Extra invocation options forwarded to the tool

        Returns:
            The tool's own result when allowed, otherwise a
            GovernanceInterception

        Raises:
            ToolConfigurationError: If the wrapped tool has no execute
        """
        body = _tool_attr(self._tool, "execute")
        if not callable(body):
            raise ToolConfigurationError(
                "Tool has no execute function", tool_name=self.tool_name
            )

        event = evaluate_call(
            self.tool_name,
            args or {},
            agent_id=self.agent_id,
            frame=self._config.frame,
            engine=self._engine,
            sensitive_check=self._config.sensitive_data_check,
            event_prefix="pst",
        )
        self.last_event = event

        if event.decision == Decision.HELD:
            notify(self._config.on_held, event.hold_request, name="on_held")
            return GovernanceInterception.from_event(event)

        if event.decision == Decision.BLOCKED:
            notify(self._config.on_blocked, event, name="on_blocked")
            return GovernanceInterception.from_event(event)

        result = body(args) if options is None else body(args, options)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __getattr__(self, name: str) -> Any:
        # Only reached for attributes the wrapper does not define itself
        if name == "_tool":
            raise AttributeError(name)
        tool = self._tool
        if isinstance(tool, Mapping):
            if name in tool:
                return tool[name]
            raise AttributeError(f"Wrapped tool has no field {name!r}")
        return getattr(tool, name)

    def __repr__(self) -> str:
        return (
            f"GovernedTool(tool_name={self.tool_name!r}, "
            f"agent_id={self.agent_id!r}, frame={self.frame!r})"
        )


def governed_tool(
    tool: Any,
    config: Union[GovernedToolConfig, Mapping[str, Any], None] = None,
    *,
    gatekeeper: Optional[DecisionEngine] = None,
    **overrides: Any,
) -> GovernedTool:
    """Wrap a tool so each invocation is governed.

    Args:
        tool: Any object (or mapping) exposing an ``execute`` callable
        config: A GovernedToolConfig or a mapping of its fields
        gatekeeper: Engine to use; the shared engine when omitted
        **overrides: Individual config fields, applied over ``config``

    Returns:
        A GovernedTool exposing the wrapped tool's attributes

    Raises:
        GovernanceConfigurationError: If the configuration does not validate
    """
    resolved = resolve_config(GovernedToolConfig, config, overrides)
    engine = gatekeeper if gatekeeper is not None else get_shared_gatekeeper()
    governed = GovernedTool(tool, resolved, engine)
    logger.debug(
        "Wrapped tool with governance",
        extra={"tool": governed.tool_name, "agent_id": governed.agent_id},
    )
    return governed
