"""
Guard configuration.

Both integration surfaces are configured through pydantic models. Each model
accepts snake_case field names as well as the camelCase names used by other
PromptSpeak integrations, so a config written for one can be reused here.
"""

from enum import Enum
from typing import Any, Callable, Mapping, Optional, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError
from pydantic.alias_generators import to_camel

from promptspeak_guard.events import GovernanceEvent
from promptspeak_guard.exceptions import GovernanceConfigurationError
from promptspeak_guard.gatekeeper.config import (
    DEFAULT_HOLD_TIMEOUT_MS,
    ExecutionControlConfig,
)
from promptspeak_guard.gatekeeper.types import DriftAlert, HoldRequest

DEFAULT_FRAME = "⊕◊▶α"
DEFAULT_DRIFT_THRESHOLD = 0.15

BlockedCallback = Callable[[GovernanceEvent], Any]
HeldCallback = Callable[[HoldRequest], Any]
DriftCallback = Callable[[list[DriftAlert]], Any]
DecisionCallback = Callable[[GovernanceEvent], Any]


class MiddlewareMode(str, Enum):
    """Governance strictness for the batch generation guard."""

    STRICT = "strict"
    STANDARD = "standard"
    FLEXIBLE = "flexible"
    PERMISSIVE = "permissive"


class GovernedToolConfig(BaseModel):
    """
    Configuration for a single guarded tool.
    """

    frame: str = Field(
        default=DEFAULT_FRAME,
        description="Policy-context label sent with every decision request",
    )
    sensitive_data_check: bool = Field(
        default=True,
        description="Block calls whose arguments contain sensitive data",
    )
    agent_id: Optional[str] = Field(
        default=None,
        description="Agent identity; generated once per guard when omitted",
    )
    tool_name: Optional[str] = Field(
        default=None,
        description="Name reported to the engine; derived from the tool when omitted",
    )
    max_autonomy_level: Optional[str] = Field(
        default=None,
        description="Autonomy ceiling carried for the host framework",
    )
    on_blocked: Optional[BlockedCallback] = None
    on_held: Optional[HeldCallback] = None

    model_config = {
        "populate_by_name": True,
        "alias_generator": to_camel,
        "extra": "forbid",
    }


class PromptSpeakMiddlewareConfig(BaseModel):
    """
    Configuration for the batch generation guard.

    ``drift_threshold`` is used as the engine's drift prediction threshold.
    The baseline deviation threshold defaults to twice that value (capped at
    1.0) unless ``baseline_deviation_threshold`` is set explicitly.
    """

    mode: MiddlewareMode = Field(
        default=MiddlewareMode.STANDARD,
        description="Governance strictness",
    )
    drift_threshold: float = Field(
        default=DEFAULT_DRIFT_THRESHOLD,
        ge=0.0,
        le=1.0,
        description="Drift sensitivity in [0, 1]",
    )
    baseline_deviation_threshold: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Override for the baseline deviation threshold",
    )
    sensitive_data: bool = Field(
        default=True,
        description="Block tool calls whose arguments contain sensitive data",
    )
    max_autonomy_level: Optional[str] = Field(
        default=None,
        description="Autonomy ceiling carried for the host framework",
    )
    agent_id: Optional[str] = Field(
        default=None,
        description="Agent identity; generated once per middleware when omitted",
    )
    default_frame: str = Field(
        default=DEFAULT_FRAME,
        description="Policy-context label sent with every decision request",
    )
    on_blocked: Optional[BlockedCallback] = None
    on_held: Optional[HeldCallback] = None
    on_drift: Optional[DriftCallback] = None
    on_decision: Optional[DecisionCallback] = None

    model_config = {
        "populate_by_name": True,
        "alias_generator": to_camel,
        "extra": "forbid",
    }

    @property
    def effective_baseline_deviation_threshold(self) -> float:
        if self.baseline_deviation_threshold is not None:
            return self.baseline_deviation_threshold
        return min(1.0, self.drift_threshold * 2)


def build_execution_control_config(
    config: PromptSpeakMiddlewareConfig,
) -> ExecutionControlConfig:
    """Map a middleware mode and drift threshold to an engine policy.

    - strict and standard hold on drift prediction; permissive never does
    - strict also holds on low confidence and halts on high drift
    - every mode halts on critical drift
    """
    mode = config.mode
    return ExecutionControlConfig(
        enable_pre_flight_drift_prediction=True,
        drift_prediction_threshold=config.drift_threshold,
        enable_circuit_breaker_check=True,
        enable_baseline_comparison=True,
        baseline_deviation_threshold=config.effective_baseline_deviation_threshold,
        hold_on_drift_prediction=mode != MiddlewareMode.PERMISSIVE,
        hold_on_low_confidence=mode == MiddlewareMode.STRICT,
        hold_on_forbidden_with_override=False,
        hold_timeout_ms=DEFAULT_HOLD_TIMEOUT_MS,
        enable_mcp_validation=False,
        mcp_validation_tools=[],
        halt_on_critical_drift=True,
        halt_on_high_drift=mode == MiddlewareMode.STRICT,
    )


ConfigT = TypeVar("ConfigT", bound=BaseModel)


def _by_field_name(model: type[BaseModel], values: Mapping[str, Any]) -> dict[str, Any]:
    """Rekey a mapping from aliases to field names; unknown keys are kept."""
    names = {
        info.alias: name
        for name, info in model.model_fields.items()
        if info.alias is not None
    }
    return {names.get(key, key): value for key, value in values.items()}


def resolve_config(
    model: type[ConfigT],
    config: Union[ConfigT, Mapping[str, Any], None],
    overrides: Mapping[str, Any],
) -> ConfigT:
    """Build a config model from an instance, a mapping and keyword overrides.

    Raises:
        GovernanceConfigurationError: If the merged values do not validate
    """
    if isinstance(config, model) and not overrides:
        return config

    if config is None:
        data: dict[str, Any] = {}
    elif isinstance(config, BaseModel):
        data = config.model_dump(exclude_unset=True)
    else:
        data = _by_field_name(model, config)
    # Keys are field names from here on, so an override replaces its alias
    data.update(_by_field_name(model, overrides))

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise GovernanceConfigurationError(
            f"Invalid {model.__name__}: {e}", cause=e
        ) from e
