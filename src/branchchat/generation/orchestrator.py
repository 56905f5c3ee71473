"""Single-attempt generation: credential, priming turns, backend call, result split."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from branchchat.generation.backend import GenerationRequest
from branchchat.models.nodes import TokenUsage

if TYPE_CHECKING:
    from branchchat.generation.backend import GenerationBackend, GenerationResponse
    from branchchat.models.settings import AppSettings
    from branchchat.session.cancellation import CancellationToken

logger = logging.getLogger(__name__)

NO_RESPONSE_TEXT = "(no response)"
MINIMAL_METADATA_CONTENTS = 3
MISSING_KEY_MESSAGE = "No API key is configured."


class ConfigurationError(RuntimeError):
    """Raised when the client cannot send because configuration is incomplete."""


class UsageTracker(Protocol):
    """Token cost accounting collaborator."""

    async def track_usage(
        self, model: str, usage: dict[str, Any], threshold: float | None
    ) -> bool:
        """Record usage; return True when this call crossed ``threshold``."""
        ...


class NullUsageTracker:
    """Usage tracker that records nothing and never alerts."""

    async def track_usage(
        self, model: str, usage: dict[str, Any], threshold: float | None
    ) -> bool:
        return False


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one successful backend call."""

    answer: str
    reasoning: str | None
    finish_reason: str | None
    metadata: dict[str, Any]
    request_payload: dict[str, Any]
    token_usage: TokenUsage | None
    cost_alert_triggered: bool = False
    cost_threshold: float | None = None


def resolve_api_key(settings: AppSettings) -> str:
    """Return the active credential string or raise ConfigurationError."""
    api_key = settings.active_api_key()
    if api_key is None or not api_key.key:
        raise ConfigurationError(MISSING_KEY_MESSAGE)
    return api_key.key


def split_reasoning(response: GenerationResponse) -> tuple[str, str | None]:
    """Separate thought parts from answer parts.

    Returns ``(answer, reasoning)``; reasoning is None when no thought text
    was produced.
    """
    answer = ""
    reasoning = ""
    for part in response.parts:
        if part.get("thought") is True:
            reasoning += part.get("text") or ""
        else:
            answer += part.get("text") or ""
    if not answer and not reasoning:
        answer = response.text or NO_RESPONSE_TEXT
    return answer.strip(), reasoning.strip() or None


class GenerationOrchestrator:
    """Run exactly one backend attempt for a composed turn.

    Retry and credential rotation are the caller's concern.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        usage_tracker: UsageTracker | None = None,
    ) -> None:
        self._backend = backend
        self._usage_tracker = usage_tracker or NullUsageTracker()

    def build_contents(
        self,
        history: list[dict[str, Any]],
        content: list[dict[str, Any]],
        settings: AppSettings,
    ) -> list[dict[str, Any]]:
        """Assemble the contents list; priming turns follow the real user turn."""
        contents = [copy.deepcopy(entry) for entry in history]
        if content:
            contents.append({"role": "user", "parts": copy.deepcopy(content)})
        dummy_user = settings.dummy_user_prompt.active_text()
        if dummy_user:
            contents.append({"role": "user", "parts": [{"text": dummy_user}]})
        dummy_model = settings.dummy_model_prompt.active_text()
        if dummy_model:
            contents.append({"role": "model", "parts": [{"text": dummy_model}]})
        return contents

    async def generate(
        self,
        history: list[dict[str, Any]],
        content: list[dict[str, Any]],
        settings: AppSettings,
        cancel: CancellationToken | None = None,
    ) -> GenerationResult:
        """Send one request and return the split result.

        Raises:
            ConfigurationError: If no credential is configured.
            BackendError: If the backend rejects the request.
            GenerationCancelled: If ``cancel`` fires before the reply arrives.
        """
        api_key = resolve_api_key(settings)
        request = GenerationRequest(
            model=settings.model,
            contents=self.build_contents(history, content, settings),
            generation=settings.generation,
            system_instruction=settings.system_prompt.active_text(),
        )

        logger.debug(
            "Generating with model=%s contents=%d", request.model, len(request.contents)
        )
        call = self._backend.generate(request, api_key=api_key)
        response = await (cancel.run(call) if cancel is not None else call)

        answer, reasoning = split_reasoning(response)

        cost_alert_triggered = False
        cost_threshold: float | None = None
        if response.usage:
            alert = settings.token_usage_alert
            if alert.is_enabled and alert.threshold_usd > 0:
                cost_threshold = alert.threshold_usd
            crossed = await self._usage_tracker.track_usage(
                settings.model, response.usage, cost_threshold
            )
            cost_alert_triggered = crossed and cost_threshold is not None

        request_payload = request.echo()
        if settings.assist.save_minimal_metadata:
            request_payload["contents"] = request_payload["contents"][-MINIMAL_METADATA_CONTENTS:]

        return GenerationResult(
            answer=answer,
            reasoning=reasoning,
            finish_reason=response.finish_reason,
            metadata=copy.deepcopy(response.raw),
            request_payload=request_payload,
            token_usage=(
                TokenUsage.from_usage_metadata(response.usage) if response.usage else None
            ),
            cost_alert_triggered=cost_alert_triggered,
            cost_threshold=cost_threshold,
        )
