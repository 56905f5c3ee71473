"""Generation backend contract."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from branchchat.utils import drop_none

if TYPE_CHECKING:
    from branchchat.models.settings import GenerationSettings

HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
    "HARM_CATEGORY_CIVIC_INTEGRITY",
)
SAFETY_SETTINGS = [
    {"category": category, "threshold": "BLOCK_NONE"} for category in HARM_CATEGORIES
]


class BackendError(Exception):
    """Failure reported by the generation backend."""

    def __init__(
        self,
        status: int | None,
        message: str,
        request_payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.request_payload = request_payload

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f"[{self.status}] {self.message}"


@dataclass(frozen=True)
class GenerationRequest:
    """A single generateContent call."""

    model: str
    contents: list[dict[str, Any]]
    generation: GenerationSettings
    system_instruction: str | None = None

    def generation_config(self) -> dict[str, Any]:
        settings = self.generation
        config: dict[str, Any] = drop_none(
            {
                "temperature": settings.temperature,
                "topK": settings.top_k,
                "topP": settings.top_p,
                "maxOutputTokens": settings.max_output_tokens,
            }
        )
        thinking: dict[str, Any] = {}
        if settings.include_thoughts:
            thinking["includeThoughts"] = True
        if settings.thinking_budget is not None:
            thinking["thinkingBudget"] = settings.thinking_budget
        if thinking:
            config["thinkingConfig"] = thinking
        return config

    def to_body(self) -> dict[str, Any]:
        """Render the REST request body."""
        body: dict[str, Any] = {
            "contents": self.contents,
            "generationConfig": self.generation_config(),
            "safetySettings": SAFETY_SETTINGS,
        }
        if self.system_instruction:
            body["systemInstruction"] = {"parts": [{"text": self.system_instruction}]}
        return body

    def echo(self) -> dict[str, Any]:
        """Return the request as stored alongside the turn."""
        config = self.generation_config()
        config["safetySettings"] = SAFETY_SETTINGS
        if self.system_instruction:
            config["systemInstruction"] = {"parts": [{"text": self.system_instruction}]}
        return {"model": self.model, "contents": list(self.contents), "config": config}


@dataclass(frozen=True)
class GenerationResponse:
    """First candidate of a successful completion."""

    parts: list[dict[str, Any]] = field(default_factory=list)
    finish_reason: str | None = None
    usage: dict[str, Any] | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        """Concatenated text of all non-thought parts."""
        return "".join(
            part.get("text", "") for part in self.parts if not part.get("thought")
        )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> GenerationResponse:
        candidates = payload.get("candidates") or []
        candidate = candidates[0] if candidates else {}
        content = candidate.get("content") or {}
        return cls(
            parts=list(content.get("parts") or []),
            finish_reason=candidate.get("finishReason"),
            usage=payload.get("usageMetadata"),
            raw=payload,
        )


class GenerationBackend(Protocol):
    """What the orchestrator and token counter need from a backend."""

    async def generate(self, request: GenerationRequest, *, api_key: str) -> GenerationResponse:
        """Run one completion; raise BackendError on failure."""
        ...

    async def count_tokens(
        self,
        *,
        api_key: str,
        model: str,
        contents: list[dict[str, Any]],
        system_instruction: str | None = None,
    ) -> int:
        """Estimate the prompt size; return 0 when unavailable."""
        ...
