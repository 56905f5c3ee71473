"""Classify backend failures and truncated completions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

INVALID_KEY_SIGNALS = ("API key not valid", "API_KEY_INVALID")
PROMPT_BLOCKED_SIGNALS = ("Prompt blocked", "PROHIBITED_CONTENT")
INVALID_HISTORY_SIGNALS = ("alternate between user and model",)

RETRYABLE_STATUSES = frozenset({500, 503, 504})
UNAUTHORIZED_STATUSES = frozenset({401, 403})

FINISH_REASON_ANNOTATIONS = {
    "SAFETY": (
        "\n\n[Safety filter] Generation was stopped for safety reasons "
        "(possible violent, sexual or discriminatory content)."
    ),
    "RECITATION": (
        "\n\n[Copyright] Generation was stopped because the output resembled "
        "copyrighted content."
    ),
    "MAX_TOKENS": "\n\n(The reply was cut off because it was too long. Ask to continue.)",
    "OTHER": "\n\n(Generation stopped.)",
}


class ErrorCategory(str, Enum):
    RETRYABLE = "retryable"
    QUOTA_EXCEEDED = "quota-exceeded"
    KEY_INVALID = "key-invalid"
    INVALID_INPUT = "invalid-input"
    INVALID_HISTORY = "invalid-history"
    MODEL_NOT_FOUND = "model-not-found"
    PROMPT_BLOCKED = "prompt-blocked"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorAnalysis:
    """Classification result for a failed backend call."""

    category: ErrorCategory
    user_message: str
    technical_detail: str

    def to_dict(self) -> dict[str, str]:
        return {
            "category": self.category.value,
            "userMessage": self.user_message,
            "technicalDetail": self.technical_detail,
        }


def classify(status: int | None, message: str) -> ErrorAnalysis:
    """Classify a failure from its status code and message.

    Message signals take precedence over the status code, since the backend
    reports an invalid key with a plain 400.
    """
    if any(signal in message for signal in INVALID_KEY_SIGNALS):
        return ErrorAnalysis(
            ErrorCategory.KEY_INVALID,
            "The API key is not valid. Check your settings.",
            f"Invalid API Key: {message}",
        )
    if any(signal in message for signal in PROMPT_BLOCKED_SIGNALS):
        return ErrorAnalysis(
            ErrorCategory.PROMPT_BLOCKED,
            "The input violated the safety policy, so generation was blocked.",
            f"Prompt Blocked: {message}",
        )
    if any(signal in message for signal in INVALID_HISTORY_SIGNALS):
        return ErrorAnalysis(
            ErrorCategory.INVALID_HISTORY,
            "The conversation history is out of order. Reload or start a new chat.",
            f"History Order Error: {message}",
        )

    if status == 429:
        return ErrorAnalysis(
            ErrorCategory.QUOTA_EXCEEDED,
            "The rate limit was reached. Wait a moment or check your API key.",
            f"Rate Limit Exceeded (429): {message}",
        )
    if status == 404:
        return ErrorAnalysis(
            ErrorCategory.MODEL_NOT_FOUND,
            "The configured model was not found. Check the model name in settings.",
            f"Model Not Found (404): {message}",
        )
    if status in RETRYABLE_STATUSES:
        return ErrorAnalysis(
            ErrorCategory.RETRYABLE,
            "The server is busy or hit a temporary error.",
            f"Server Error ({status}): {message}",
        )
    if status == 400:
        return ErrorAnalysis(
            ErrorCategory.INVALID_INPUT,
            "The request was invalid. An attachment format may be unsupported "
            "or the input may be too long.",
            f"Bad Request (400): {message}",
        )
    if status in UNAUTHORIZED_STATUSES:
        return ErrorAnalysis(
            ErrorCategory.KEY_INVALID,
            "The API key is not authorized or is invalid.",
            f"Auth Error ({status}): {message}",
        )
    return ErrorAnalysis(
        ErrorCategory.UNKNOWN,
        "An unexpected error occurred.",
        f"Unknown Error: {message}",
    )


def error_status(exc: BaseException) -> int | None:
    """Read an HTTP status from an exception, if it carries one."""
    status: Any = getattr(exc, "status", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def error_message(exc: BaseException) -> str:
    message = getattr(exc, "message", None)
    if isinstance(message, str):
        return message
    return str(exc)


def analyze_error(exc: BaseException) -> ErrorAnalysis:
    """Classify an exception raised by a backend call."""
    return classify(error_status(exc), error_message(exc))


def finish_reason_annotation(reason: str | None) -> str | None:
    """Return the note appended to a truncated reply; None for normal completion."""
    if not reason:
        return None
    return FINISH_REASON_ANNOTATIONS.get(reason)
