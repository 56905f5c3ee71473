"""Shared fakes and builders for the test suite."""

from __future__ import annotations

from typing import Any

from branchchat.generation.backend import BackendError, GenerationRequest, GenerationResponse
from branchchat.models.nodes import Node
from branchchat.session.listener import SessionListener


def make_node(
    node_id: str,
    parent_id: str | None = None,
    *,
    timestamp: str = "2024-01-01T00:00:00+00:00",
    active_child_id: str | None = None,
    speaker: str = "user",
    text: str = "",
    conversation_id: str = "conv",
) -> Node:
    return Node(
        id=node_id,
        conversation_id=conversation_id,
        speaker=speaker,  # type: ignore[arg-type]
        text=text or node_id,
        timestamp=timestamp,
        parent_id=parent_id,
        active_child_id=active_child_id,
    )


def response(text: str = "hello", finish_reason: str = "STOP", **extra: Any) -> GenerationResponse:
    payload = {
        "candidates": [
            {"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": finish_reason}
        ],
        "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 2, "totalTokenCount": 7},
        **extra,
    }
    return GenerationResponse.from_payload(payload)


class FakeBackend:
    """Backend that replays queued outcomes and records every call."""

    def __init__(self, *outcomes: GenerationResponse | Exception) -> None:
        self.outcomes = list(outcomes)
        self.requests: list[GenerationRequest] = []
        self.api_keys: list[str] = []
        self.token_count = 42
        self.count_calls: list[dict[str, Any]] = []

    async def generate(self, request: GenerationRequest, *, api_key: str) -> GenerationResponse:
        self.requests.append(request)
        self.api_keys.append(api_key)
        outcome = self.outcomes.pop(0) if self.outcomes else response()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def count_tokens(
        self,
        *,
        api_key: str,
        model: str,
        contents: list[dict[str, Any]],
        system_instruction: str | None = None,
    ) -> int:
        self.count_calls.append({"api_key": api_key, "model": model, "contents": contents})
        return self.token_count


class RecordingSleep:
    """Sleep replacement that returns immediately and records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedListener(SessionListener):
    def __init__(self, *, rotate: bool = False, drop_expired: bool = True) -> None:
        self.rotate = rotate
        self.drop_expired = drop_expired
        self.rotation_prompts: list[tuple[str | None, str]] = []
        self.errors: list[Any] = []
        self.states: list[Any] = []
        self.cost_alerts: list[float] = []

    async def confirm_key_rotation(self, current, upcoming) -> bool:
        self.rotation_prompts.append((current.id if current else None, upcoming.id))
        return self.rotate

    async def confirm_drop_expired(self, expired) -> bool:
        return self.drop_expired

    def acknowledge_error(self, analysis) -> None:
        self.errors.append(analysis)

    def cost_alert(self, threshold: float) -> None:
        self.cost_alerts.append(threshold)

    def state_changed(self, state) -> None:
        self.states.append(state)


def backend_error(status: int | None, message: str = "boom") -> BackendError:
    return BackendError(status, message)

