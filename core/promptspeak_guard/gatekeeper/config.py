"""Execution-control configuration for the decision engine.

ExecutionControlConfig is the policy handed to the engine through
``set_execution_control_config``. Field names are snake_case; the camelCase
names used by other PromptSpeak integrations are accepted as aliases.
"""

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

DEFAULT_HOLD_TIMEOUT_MS = 30000


class ExecutionControlConfig(BaseModel):
    """
    Policy controlling how the engine gates tool calls.

    Pre-flight checks run before a call is allowed and may hold it;
    post-audit checks run after a call is allowed and may halt the agent
    for subsequent calls.
    """

    enable_pre_flight_drift_prediction: bool = Field(
        default=True,
        description="Predict drift before allowing a call",
    )
    drift_prediction_threshold: float = Field(
        default=0.15,
        ge=0.0,
        le=1.0,
        description="Predicted drift above this value is considered risky",
    )
    enable_circuit_breaker_check: bool = Field(
        default=True,
        description="Block calls from agents halted by an earlier drift event",
    )
    enable_baseline_comparison: bool = Field(
        default=True,
        description="Compare allowed calls against the agent's baseline",
    )
    baseline_deviation_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Per-call deviation above this value raises a drift alert",
    )
    hold_on_drift_prediction: bool = Field(
        default=True,
        description="Hold calls whose predicted drift exceeds the threshold",
    )
    hold_on_low_confidence: bool = Field(
        default=False,
        description="Hold calls when prediction confidence is low",
    )
    low_confidence_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Confidence below this value counts as low",
    )
    hold_on_forbidden_with_override: bool = Field(
        default=False,
        description="Hold forbidden tools for override instead of blocking",
    )
    hold_timeout_ms: int = Field(
        default=DEFAULT_HOLD_TIMEOUT_MS,
        gt=0,
        description="How long a hold stays pending before it expires",
    )
    enable_mcp_validation: bool = Field(
        default=False,
        description="Only allow tools listed in mcp_validation_tools",
    )
    mcp_validation_tools: list[str] = Field(
        default_factory=list,
        description="Allowlist used when MCP validation is enabled",
    )
    halt_on_critical_drift: bool = Field(
        default=True,
        description="Halt the agent when a critical drift alert is raised",
    )
    halt_on_high_drift: bool = Field(
        default=False,
        description="Halt the agent when a high drift alert is raised",
    )

    model_config = {
        "populate_by_name": True,
        "alias_generator": to_camel,
        "extra": "forbid",
    }
