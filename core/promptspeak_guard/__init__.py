"""Tool-call governance for AI agents.

This package intercepts the tool calls an agent issues, decides whether
each call is allowed, blocked or held, and reshapes the agent's output to
match. Two integration surfaces share one decision core:

- governed_tool: wraps a single tool; blocked or held invocations return a
  GovernanceInterception instead of running the tool
- prompt_speak_middleware: wraps a generation step; tool calls that are not
  allowed are dropped and a tagged notice is appended to the text

Every decision produces an immutable GovernanceEvent.

Example:
    from promptspeak_guard import AiTool, governed_tool, prompt_speak_middleware

    send = governed_tool(
        AiTool(description="send email", execute=send_email),
        on_blocked=lambda event: print(event.reason),
    )
    result = await send.execute({"to": "ops@example.com", "body": "hi"})

    middleware = prompt_speak_middleware(mode="strict")
    result = await middleware.wrap_generate(do_generate)
"""

from promptspeak_guard.config import (
    DEFAULT_DRIFT_THRESHOLD,
    DEFAULT_FRAME,
    GovernedToolConfig,
    MiddlewareMode,
    PromptSpeakMiddlewareConfig,
    build_execution_control_config,
)
from promptspeak_guard.evaluator import evaluate_call, sanitize_tool_name
from promptspeak_guard.events import Decision, GovernanceEvent, GovernanceInterception
from promptspeak_guard.exceptions import (
    GovernanceConfigurationError,
    GovernanceError,
    HoldNotFoundError,
    ToolConfigurationError,
)
from promptspeak_guard.gatekeeper import (
    DecisionEngine,
    DriftAlert,
    ExecuteRequest,
    ExecuteResult,
    ExecutionControlConfig,
    Gatekeeper,
    HoldDecision,
    HoldRequest,
    PostAudit,
    PreFlightCheck,
    Severity,
    contains_sensitive_data,
)
from promptspeak_guard.governed_tool import AiTool, GovernedTool, governed_tool
from promptspeak_guard.middleware import (
    GenerateResult,
    PromptSpeakMiddleware,
    ToolCall,
    create_gatekeeper,
    prompt_speak_middleware,
)
from promptspeak_guard.shared import get_shared_gatekeeper, reset_shared_gatekeeper

__version__ = "0.1.0"

__all__ = [
    # Guards
    "governed_tool",
    "GovernedTool",
    "AiTool",
    "prompt_speak_middleware",
    "PromptSpeakMiddleware",
    "GenerateResult",
    "ToolCall",
    # Decision core
    "evaluate_call",
    "sanitize_tool_name",
    # Events
    "Decision",
    "GovernanceEvent",
    "GovernanceInterception",
    # Configuration
    "GovernedToolConfig",
    "PromptSpeakMiddlewareConfig",
    "MiddlewareMode",
    "build_execution_control_config",
    "DEFAULT_FRAME",
    "DEFAULT_DRIFT_THRESHOLD",
    # Engine
    "Gatekeeper",
    "DecisionEngine",
    "create_gatekeeper",
    "get_shared_gatekeeper",
    "reset_shared_gatekeeper",
    "ExecutionControlConfig",
    "ExecuteRequest",
    "ExecuteResult",
    "HoldRequest",
    "HoldDecision",
    "DriftAlert",
    "PostAudit",
    "PreFlightCheck",
    "Severity",
    "contains_sensitive_data",
    # Exceptions
    "GovernanceError",
    "ToolConfigurationError",
    "GovernanceConfigurationError",
    "HoldNotFoundError",
    # Version
    "__version__",
]
