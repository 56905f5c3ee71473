"""REST client for the Gemini generateContent API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from branchchat.generation.backend import BackendError, GenerationRequest, GenerationResponse

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
DEFAULT_TIMEOUT = 120.0
API_VERSION = "v1beta"


class GeminiClient:
    """Minimal async client for generateContent and countTokens."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the HTTP client."""
        self._base_url = base_url
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=DEFAULT_TIMEOUT)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def generate(self, request: GenerationRequest, *, api_key: str) -> GenerationResponse:
        """Send a generateContent request and return the first candidate."""
        try:
            response = await self._client.post(
                f"/{API_VERSION}/models/{request.model}:generateContent",
                json=request.to_body(),
                headers={"x-goog-api-key": api_key},
            )
        except httpx.HTTPError as exc:
            raise BackendError(None, str(exc) or type(exc).__name__, request.echo()) from exc

        if response.is_error:
            raise BackendError(
                response.status_code, _error_message(response), request.echo()
            )

        payload = response.json()
        block_reason = (payload.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise BackendError(
                None, f"Prompt blocked by safety filters: {block_reason}", request.echo()
            )
        if not payload.get("candidates"):
            logger.warning("generateContent returned no candidates for %s", request.model)
        return GenerationResponse.from_payload(payload)

    async def count_tokens(
        self,
        *,
        api_key: str,
        model: str,
        contents: list[dict[str, Any]],
        system_instruction: str | None = None,
    ) -> int:
        """Return the prompt token count, or 0 when the call fails."""
        body: dict[str, Any] = {"contents": contents}
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        try:
            response = await self._client.post(
                f"/{API_VERSION}/models/{model}:countTokens",
                json=body,
                headers={"x-goog-api-key": api_key},
            )
            response.raise_for_status()
            return int(response.json().get("totalTokens") or 0)
        except (httpx.HTTPError, ValueError):
            logger.warning("Token count request failed", exc_info=True)
            return 0


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text or response.reason_phrase
