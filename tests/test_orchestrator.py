from __future__ import annotations

import pytest
from branchchat.generation.backend import GenerationResponse
from branchchat.generation.orchestrator import (
    ConfigurationError,
    GenerationOrchestrator,
    resolve_api_key,
)
from branchchat.models.settings import (
    AppSettings,
    AssistSettings,
    PromptPreset,
    TemplatePromptConfig,
    TokenUsageAlertSettings,
)

from tests.helpers import FakeBackend, response


def _preset(text: str) -> TemplatePromptConfig:
    return TemplatePromptConfig(
        is_enabled=True, active_preset_id="p", presets=[PromptPreset(id="p", text=text)]
    )


class ThresholdTracker:
    def __init__(self, crossed: bool) -> None:
        self.crossed = crossed
        self.calls: list[tuple] = []

    async def track_usage(self, model, usage, threshold) -> bool:
        self.calls.append((model, usage, threshold))
        return self.crossed


def test_resolve_api_key_requires_credential() -> None:
    with pytest.raises(ConfigurationError):
        resolve_api_key(AppSettings())


@pytest.mark.asyncio
async def test_missing_key_never_calls_backend() -> None:
    backend = FakeBackend()
    with pytest.raises(ConfigurationError):
        await GenerationOrchestrator(backend).generate([], [{"text": "hi"}], AppSettings())
    assert backend.requests == []


@pytest.mark.asyncio
async def test_priming_turns_follow_user_turn(settings: AppSettings) -> None:
    settings = settings.model_copy(
        update={
            "system_prompt": _preset("system"),
            "dummy_user_prompt": _preset("dummy user"),
            "dummy_model_prompt": _preset("dummy model"),
        }
    )
    backend = FakeBackend(response("ok"))
    history = [{"role": "user", "parts": [{"text": "old"}]}]
    await GenerationOrchestrator(backend).generate(history, [{"text": "new"}], settings)

    request = backend.requests[0]
    assert request.system_instruction == "system"
    assert [entry["parts"][0]["text"] for entry in request.contents] == [
        "old",
        "new",
        "dummy user",
        "dummy model",
    ]
    assert [entry["role"] for entry in request.contents][-1] == "model"
    assert backend.api_keys == ["secret-1"]


@pytest.mark.asyncio
async def test_empty_content_sends_history_only(settings: AppSettings) -> None:
    backend = FakeBackend(response("ok"))
    history = [{"role": "user", "parts": [{"text": "User: hi"}]}]
    await GenerationOrchestrator(backend).generate(history, [], settings)
    assert backend.requests[0].contents == history


@pytest.mark.asyncio
async def test_reasoning_split_and_fallback(settings: AppSettings) -> None:
    thought = GenerationResponse(
        parts=[
            {"text": " plan ", "thought": True},
            {"text": " answer "},
        ],
        finish_reason="STOP",
    )
    result = await GenerationOrchestrator(FakeBackend(thought)).generate([], [], settings)
    assert result.answer == "answer"
    assert result.reasoning == "plan"

    empty = GenerationResponse(parts=[], finish_reason="STOP")
    result = await GenerationOrchestrator(FakeBackend(empty)).generate([], [], settings)
    assert result.answer == "(no response)"
    assert result.reasoning is None
    assert result.token_usage is None


@pytest.mark.asyncio
async def test_cost_alert_uses_enabled_threshold(settings: AppSettings) -> None:
    tracker = ThresholdTracker(crossed=True)
    enabled = settings.model_copy(
        update={"token_usage_alert": TokenUsageAlertSettings(is_enabled=True, threshold_usd=2.5)}
    )
    result = await GenerationOrchestrator(FakeBackend(response()), tracker).generate(
        [], [], enabled
    )
    assert result.cost_alert_triggered
    assert result.cost_threshold == 2.5
    assert result.token_usage is not None
    assert result.token_usage.total == 7

    result = await GenerationOrchestrator(FakeBackend(response()), tracker).generate(
        [], [], settings
    )
    assert not result.cost_alert_triggered
    assert tracker.calls[-1][2] is None


@pytest.mark.asyncio
async def test_minimal_metadata_keeps_last_three_contents(settings: AppSettings) -> None:
    history = [{"role": "user", "parts": [{"text": str(i)}]} for i in range(5)]
    result = await GenerationOrchestrator(FakeBackend(response())).generate(
        history, [{"text": "now"}], settings
    )
    texts = [entry["parts"][0]["text"] for entry in result.request_payload["contents"]]
    assert texts == ["3", "4", "now"]

    full = settings.model_copy(update={"assist": AssistSettings(save_minimal_metadata=False)})
    result = await GenerationOrchestrator(FakeBackend(response())).generate(
        history, [{"text": "now"}], full
    )
    assert len(result.request_payload["contents"]) == 6
    assert result.request_payload["model"] == "gemini-test"
