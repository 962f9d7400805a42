"""
Tests for the batch generation guard (prompt_speak_middleware).
"""

from dataclasses import dataclass
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import BaseModel

from promptspeak_guard import (
    GenerateResult,
    PromptSpeakMiddleware,
    ToolCall,
    create_gatekeeper,
    prompt_speak_middleware,
)
from promptspeak_guard.events import Decision
from promptspeak_guard.exceptions import GovernanceConfigurationError
from promptspeak_guard.gatekeeper import ExecuteResult, Gatekeeper

SSN_ARGS = '{"ssn": "123-45-6789"}'
BENIGN_ARGS = '{"path": "/tmp"}'


# === Helpers ===


def _result(*specs, text=""):
    return GenerateResult(
        text=text,
        tool_calls=[
            ToolCall(tool_call_id=f"call_{i}", tool_name=name, args=args)
            for i, (name, args) in enumerate(specs, start=1)
        ],
        finish_reason="tool-calls",
    )


def _generator(result):
    return AsyncMock(return_value=result)


def _tool_call_mappings(*specs):
    """Build camelCase tool-call mappings from (name, args) pairs."""
    return [
        {
            "toolCallType": "function",
            "toolCallId": f"call_{i}",
            "toolName": name,
            "args": args,
        }
        for i, (name, args) in enumerate(specs, start=1)
    ]


class PydanticResult(BaseModel):
    text: Optional[str] = None
    tool_calls: list[Any] = []


class CamelPydanticResult(BaseModel):
    text: Optional[str] = None
    toolCalls: list[Any] = []


@dataclass
class CamelResult:
    toolCalls: list[Any]
    text: Optional[str] = None


@dataclass
class CallsOnlyResult:
    tool_calls: list[Any]


# === transform_params ===


class TestTransformParams:
    """Governance context is stamped onto generation parameters."""

    def test_adds_governance_context(self):
        middleware = prompt_speak_middleware(mode="strict", agent_id="agent-9")

        params = middleware.transform_params({"prompt": "hello", "temperature": 0.2})

        assert params["prompt"] == "hello"
        assert params["temperature"] == 0.2
        assert params["_promptSpeak"] == {
            "agentId": "agent-9",
            "mode": "strict",
            "driftThreshold": 0.15,
            "frame": "⊕◊▶α",
        }

    def test_defaults(self):
        middleware = prompt_speak_middleware()

        context = middleware.transform_params()["_promptSpeak"]

        assert context["mode"] == "standard"
        assert context["agentId"].startswith("agent_")

    def test_does_not_mutate_input(self):
        middleware = prompt_speak_middleware()
        original = {"prompt": "hello"}

        middleware.transform_params(original)

        assert original == {"prompt": "hello"}


# === wrap_generate ===


class TestWrapGenerate:
    """Tool calls proposed by a generation are governed in order."""

    @pytest.mark.asyncio
    async def test_without_tool_calls_returns_result_unchanged(self):
        middleware = prompt_speak_middleware()
        result = GenerateResult(text="Just text")

        assert await middleware.wrap_generate(_generator(result)) is result

    @pytest.mark.asyncio
    async def test_empty_tool_calls_returns_result_unchanged(self):
        middleware = prompt_speak_middleware()
        result = GenerateResult(text="Just text", tool_calls=[])

        assert await middleware.wrap_generate(_generator(result)) is result

    @pytest.mark.asyncio
    async def test_accepts_sync_generator(self):
        middleware = prompt_speak_middleware()
        result = GenerateResult(text="Just text")

        assert await middleware.wrap_generate(lambda: result) is result

    @pytest.mark.asyncio
    async def test_blocks_sensitive_call_and_keeps_benign(self):
        on_blocked = MagicMock()
        middleware = prompt_speak_middleware(on_blocked=on_blocked)

        result = await middleware.wrap_generate(
            _generator(_result(("sendData", SSN_ARGS), ("readFile", BENIGN_ARGS)))
        )

        on_blocked.assert_called_once()
        assert [call.tool_name for call in result.tool_calls] == ["readFile"]
        assert result.text.startswith("[PromptSpeak]")
        assert result.text == (
            '[PromptSpeak] Tool "sendData" blocked: '
            "Sensitive data detected in tool arguments"
        )
        assert result.finish_reason == "tool-calls"

    @pytest.mark.asyncio
    async def test_notice_appended_to_existing_text(self):
        middleware = prompt_speak_middleware()

        result = await middleware.wrap_generate(
            _generator(_result(("sendData", SSN_ARGS), text="Sending now."))
        )

        assert result.tool_calls == []
        assert result.text == (
            "Sending now.\n\n"
            '[PromptSpeak] Tool "sendData" blocked: '
            "Sensitive data detected in tool arguments"
        )

    @pytest.mark.asyncio
    async def test_one_notice_per_dropped_call(self):
        middleware = prompt_speak_middleware()

        result = await middleware.wrap_generate(
            _generator(_result(("first", SSN_ARGS), ("second", SSN_ARGS)))
        )

        lines = result.text.split("\n")
        assert len(lines) == 2
        assert lines[0].startswith('[PromptSpeak] Tool "first"')
        assert lines[1].startswith('[PromptSpeak] Tool "second"')

    @pytest.mark.asyncio
    async def test_all_allowed_keeps_text(self):
        middleware = prompt_speak_middleware()
        proposed = _result(("readFile", BENIGN_ARGS), ("listDir", BENIGN_ARGS), text="ok")

        result = await middleware.wrap_generate(_generator(proposed))

        assert result.text == "ok"
        assert result.tool_calls == proposed.tool_calls

    @pytest.mark.asyncio
    async def test_on_decision_fires_once_per_call_in_order(self):
        on_decision = MagicMock()
        middleware = prompt_speak_middleware(on_decision=on_decision)

        await middleware.wrap_generate(
            _generator(_result(
                ("alpha", BENIGN_ARGS),
                ("beta", SSN_ARGS),
                ("gamma", BENIGN_ARGS),
            ))
        )

        events = [call.args[0] for call in on_decision.call_args_list]
        assert [event.tool for event in events] == ["alpha", "beta", "gamma"]
        assert [event.decision for event in events] == [
            Decision.ALLOWED,
            Decision.BLOCKED,
            Decision.ALLOWED,
        ]
        assert all(event.event_id.startswith("psg_") for event in events)

    @pytest.mark.asyncio
    async def test_malformed_arguments_do_not_stop_batch(self):
        on_decision = MagicMock()
        middleware = prompt_speak_middleware(on_decision=on_decision)

        result = await middleware.wrap_generate(
            _generator(_result(("broken", "not valid json{{{"), ("readFile", BENIGN_ARGS)))
        )

        assert on_decision.call_count == 2
        assert on_decision.call_args_list[0].args[0].arguments == {}
        assert len(result.tool_calls) == 2

    @pytest.mark.asyncio
    async def test_held_call_is_dropped(self, stub_engine, hold_request):
        stub_engine.execute.return_value = ExecuteResult.hold(hold_request)
        on_held = MagicMock()
        middleware = prompt_speak_middleware(gatekeeper=stub_engine, on_held=on_held)

        result = await middleware.wrap_generate(
            _generator(_result(("transfer_funds", '{"amount": 100}')))
        )

        on_held.assert_called_once_with(hold_request)
        assert result.tool_calls == []
        assert result.text == (
            '[PromptSpeak] Tool "transfer_funds" held: '
            "Predicted drift 0.40 exceeds threshold 0.15"
        )

    @pytest.mark.asyncio
    async def test_engine_block_is_dropped(self, stub_engine):
        stub_engine.execute.return_value = ExecuteResult.block("Tool is forbidden")
        on_blocked = MagicMock()
        middleware = prompt_speak_middleware(gatekeeper=stub_engine, on_blocked=on_blocked)

        result = await middleware.wrap_generate(_generator(_result(("rm", BENIGN_ARGS))))

        assert result.tool_calls == []
        assert result.text == '[PromptSpeak] Tool "rm" blocked: Tool is forbidden'
        on_blocked.assert_called_once()

    @pytest.mark.asyncio
    async def test_callback_order(self, stub_engine, hold_request):
        calls = []
        stub_engine.execute.return_value = ExecuteResult.hold(hold_request)
        middleware = prompt_speak_middleware(
            gatekeeper=stub_engine,
            on_held=lambda hold: calls.append("held"),
            on_blocked=lambda event: calls.append("blocked"),
            on_decision=lambda event: calls.append("decision"),
        )

        await middleware.wrap_generate(
            _generator(_result(("transfer", BENIGN_ARGS), ("leak", SSN_ARGS)))
        )

        assert calls == ["held", "decision", "blocked", "decision"]

    @pytest.mark.asyncio
    async def test_drift_callback(self):
        on_drift = MagicMock()
        on_decision = MagicMock()
        middleware = prompt_speak_middleware(on_drift=on_drift, on_decision=on_decision)
        specs = [("read_file", BENIGN_ARGS)] * 5 + [("write_file", BENIGN_ARGS)]

        result = await middleware.wrap_generate(_generator(_result(*specs)))

        assert len(result.tool_calls) == 6
        on_drift.assert_called_once()
        alerts = on_drift.call_args.args[0]
        assert len(alerts) == 1
        assert alerts[0].tool == "write_file"
        last_event = on_decision.call_args_list[-1].args[0]
        assert last_event.drift_alerts == alerts

    @pytest.mark.asyncio
    async def test_agent_recovers_after_drift(self):
        """A single deviating call holds the next few calls, not all of them."""
        on_held = MagicMock()
        middleware = prompt_speak_middleware(on_held=on_held)
        specs = [("read_file", BENIGN_ARGS)] * 5 + [("write_file", BENIGN_ARGS)]
        await middleware.wrap_generate(_generator(_result(*specs)))

        kept = []
        for _ in range(5):
            result = await middleware.wrap_generate(
                _generator(_result(("read_file", BENIGN_ARGS)))
            )
            kept.append(len(result.tool_calls))

        assert kept == [0, 0, 1, 1, 1]
        assert on_held.call_count == 2

    @pytest.mark.asyncio
    async def test_failing_callback_is_isolated(self):
        on_decision = MagicMock()
        middleware = prompt_speak_middleware(
            on_blocked=MagicMock(side_effect=RuntimeError("handler bug")),
            on_decision=on_decision,
        )

        result = await middleware.wrap_generate(
            _generator(_result(("leak", SSN_ARGS), ("readFile", BENIGN_ARGS)))
        )

        assert on_decision.call_count == 2
        assert [call.tool_name for call in result.tool_calls] == ["readFile"]

    @pytest.mark.asyncio
    async def test_sensitive_check_can_be_disabled(self):
        middleware = prompt_speak_middleware(sensitive_data=False)

        result = await middleware.wrap_generate(_generator(_result(("leak", SSN_ARGS))))

        assert len(result.tool_calls) == 1

    @pytest.mark.asyncio
    async def test_mapping_result(self):
        middleware = prompt_speak_middleware()
        proposed = {
            "text": "Here you go",
            "toolCalls": _tool_call_mappings(("readFile", BENIGN_ARGS), ("send", SSN_ARGS)),
            "finishReason": "tool-calls",
        }

        result = await middleware.wrap_generate(_generator(proposed))

        assert [call["toolName"] for call in result["toolCalls"]] == ["readFile"]
        assert result["finishReason"] == "tool-calls"
        assert result["text"].startswith("Here you go\n\n[PromptSpeak]")
        assert len(proposed["toolCalls"]) == 2

    @pytest.mark.asyncio
    async def test_pydantic_result(self):
        middleware = prompt_speak_middleware()
        proposed = PydanticResult(
            tool_calls=[ToolCall(tool_call_id="call_1", tool_name="leak", args=SSN_ARGS)]
        )

        result = await middleware.wrap_generate(_generator(proposed))

        assert result.tool_calls == []
        assert result.text.startswith("[PromptSpeak]")

    @pytest.mark.asyncio
    async def test_camel_case_dataclass_result(self):
        middleware = prompt_speak_middleware()
        proposed = CamelResult(
            toolCalls=[
                ToolCall(tool_call_id="call_1", tool_name="read_file", args=BENIGN_ARGS),
                ToolCall(tool_call_id="call_2", tool_name="leak", args=SSN_ARGS),
            ],
            text="Done",
        )

        result = await middleware.wrap_generate(_generator(proposed))

        assert [call.tool_name for call in result.toolCalls] == ["read_file"]
        assert result.text.startswith("Done\n\n[PromptSpeak]")

    @pytest.mark.asyncio
    async def test_camel_case_pydantic_result(self):
        middleware = prompt_speak_middleware()
        proposed = CamelPydanticResult(
            toolCalls=[ToolCall(tool_call_id="call_1", tool_name="leak", args=SSN_ARGS)]
        )

        result = await middleware.wrap_generate(_generator(proposed))

        assert result.toolCalls == []
        assert result.text.startswith("[PromptSpeak]")

    @pytest.mark.asyncio
    async def test_result_without_text_field_keeps_filtering(self):
        middleware = prompt_speak_middleware()
        proposed = CallsOnlyResult(
            tool_calls=[
                ToolCall(tool_call_id="call_1", tool_name="leak", args=SSN_ARGS),
                ToolCall(tool_call_id="call_2", tool_name="read_file", args=BENIGN_ARGS),
            ]
        )

        with patch("promptspeak_guard.middleware.logger") as mock_logger:
            result = await middleware.wrap_generate(_generator(proposed))

        assert [call.tool_name for call in result.tool_calls] == ["read_file"]
        mock_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_dataclass_without_tool_calls_field_raises(self):
        @dataclass
        class NoCallsField:
            text: Optional[str] = None

            @property
            def tool_calls(self):
                return [ToolCall(tool_call_id="c", tool_name="leak", args=SSN_ARGS)]

        middleware = prompt_speak_middleware()

        with pytest.raises(TypeError, match="no tool_calls or toolCalls field"):
            await middleware.wrap_generate(_generator(NoCallsField()))

    @pytest.mark.asyncio
    async def test_unsupported_result_type_raises(self):
        class Opaque:
            def __init__(self):
                self.tool_calls = [ToolCall(tool_call_id="c", tool_name="t", args=BENIGN_ARGS)]
                self.text = None

        middleware = prompt_speak_middleware()

        with pytest.raises(TypeError):
            await middleware.wrap_generate(_generator(Opaque()))


# === wrap_stream ===


class TestWrapStream:
    @pytest.mark.asyncio
    async def test_stream_passes_through(self):
        middleware = prompt_speak_middleware()
        stream = object()

        assert await middleware.wrap_stream(AsyncMock(return_value=stream)) is stream


# === Mode mapping and engine ===


class TestModeMapping:
    """Modes map onto the engine's execution-control policy."""

    @pytest.mark.parametrize(
        "mode,hold_on_drift,hold_on_low_confidence,halt_on_high",
        [
            ("strict", True, True, True),
            ("standard", True, False, False),
            ("flexible", True, False, False),
            ("permissive", False, False, False),
        ],
    )
    def test_mode_flags(self, mode, hold_on_drift, hold_on_low_confidence, halt_on_high):
        middleware = prompt_speak_middleware(mode=mode)
        config = middleware.execution_control_config

        assert config.hold_on_drift_prediction is hold_on_drift
        assert config.hold_on_low_confidence is hold_on_low_confidence
        assert config.halt_on_high_drift is halt_on_high
        assert config.halt_on_critical_drift is True
        assert config.hold_timeout_ms == 30000
        assert config.hold_on_forbidden_with_override is False
        assert config.enable_mcp_validation is False

    def test_drift_threshold_mapping(self):
        config = prompt_speak_middleware(drift_threshold=0.2).execution_control_config

        assert config.drift_prediction_threshold == 0.2
        assert config.baseline_deviation_threshold == pytest.approx(0.4)

    def test_baseline_threshold_is_capped(self):
        config = prompt_speak_middleware(drift_threshold=0.8).execution_control_config

        assert config.baseline_deviation_threshold == 1.0

    def test_baseline_threshold_override(self):
        config = prompt_speak_middleware(
            drift_threshold=0.2, baseline_deviation_threshold=0.25
        ).execution_control_config

        assert config.baseline_deviation_threshold == 0.25

    def test_policy_applied_to_injected_engine(self, gatekeeper):
        prompt_speak_middleware(mode="strict", gatekeeper=gatekeeper)

        assert gatekeeper.get_execution_control_config().hold_on_low_confidence is True

    def test_policy_applied_to_engine_double(self, stub_engine):
        middleware = prompt_speak_middleware(gatekeeper=stub_engine)

        stub_engine.set_execution_control_config.assert_called_once_with(
            middleware.execution_control_config
        )

    @pytest.mark.parametrize(
        "overrides",
        [{"mode": "reckless"}, {"drift_threshold": 1.5}, {"drift_threshold": -0.1}],
    )
    def test_invalid_config_raises(self, overrides):
        with pytest.raises(GovernanceConfigurationError):
            prompt_speak_middleware(**overrides)

    def test_accepts_camel_case_mapping(self):
        middleware = prompt_speak_middleware(
            {"driftThreshold": 0.1, "defaultFrame": "⊖▶β", "agentId": "agent-3"}
        )

        assert middleware.config.drift_threshold == 0.1
        assert middleware.agent_id == "agent-3"
        assert middleware.transform_params()["_promptSpeak"]["frame"] == "⊖▶β"

    def test_keyword_override_replaces_camel_case_key(self):
        middleware = prompt_speak_middleware({"driftThreshold": 0.2}, drift_threshold=0.5)

        assert middleware.config.drift_threshold == 0.5
        assert middleware.execution_control_config.drift_prediction_threshold == 0.5


class TestEngineOwnership:
    def test_creates_dedicated_engine(self):
        first = prompt_speak_middleware()
        second = prompt_speak_middleware()

        assert isinstance(first, PromptSpeakMiddleware)
        assert isinstance(first.engine, Gatekeeper)
        assert first.engine is not second.engine

    def test_close_stops_owned_engine(self):
        middleware = prompt_speak_middleware()

        with patch.object(middleware.engine, "stop_periodic_cleanup") as stop:
            middleware.close()

        stop.assert_called_once()

    def test_close_leaves_injected_engine_running(self, stub_engine):
        middleware = prompt_speak_middleware(gatekeeper=stub_engine)

        middleware.close()

        stub_engine.stop_periodic_cleanup.assert_not_called()


class TestCreateGatekeeper:
    def test_configured_for_mode(self):
        gatekeeper = create_gatekeeper(mode="strict", drift_threshold=0.1)

        config = gatekeeper.get_execution_control_config()
        assert isinstance(gatekeeper, Gatekeeper)
        assert config.hold_on_low_confidence is True
        assert config.drift_prediction_threshold == 0.1
        assert config.baseline_deviation_threshold == pytest.approx(0.2)

    def test_invalid_config_raises(self):
        with pytest.raises(GovernanceConfigurationError):
            create_gatekeeper(mode="reckless")
