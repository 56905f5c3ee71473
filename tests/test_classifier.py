from __future__ import annotations

import httpx
import pytest
from branchchat.generation.backend import BackendError
from branchchat.generation.classifier import (
    ErrorCategory,
    analyze_error,
    classify,
    finish_reason_annotation,
)


@pytest.mark.parametrize(
    ("status", "category"),
    [
        (429, ErrorCategory.QUOTA_EXCEEDED),
        (404, ErrorCategory.MODEL_NOT_FOUND),
        (500, ErrorCategory.RETRYABLE),
        (503, ErrorCategory.RETRYABLE),
        (504, ErrorCategory.RETRYABLE),
        (400, ErrorCategory.INVALID_INPUT),
        (401, ErrorCategory.KEY_INVALID),
        (403, ErrorCategory.KEY_INVALID),
        (418, ErrorCategory.UNKNOWN),
        (None, ErrorCategory.UNKNOWN),
    ],
)
def test_status_table(status: int | None, category: ErrorCategory) -> None:
    assert classify(status, "something happened").category is category


def test_message_signals_override_status() -> None:
    assert classify(400, "API key not valid. Please pass a valid API key.").category is (
        ErrorCategory.KEY_INVALID
    )
    assert classify(503, "blocked: PROHIBITED_CONTENT").category is ErrorCategory.PROMPT_BLOCKED
    history = classify(400, "Please ensure that turns alternate between user and model")
    assert history.category is ErrorCategory.INVALID_HISTORY


def test_technical_detail_embeds_status_and_message() -> None:
    analysis = classify(503, "overloaded")
    assert analysis.technical_detail == "Server Error (503): overloaded"
    assert analysis.user_message


def test_analyze_backend_error() -> None:
    analysis = analyze_error(BackendError(429, "User Rate Limit Exceeded"))
    assert analysis.category is ErrorCategory.QUOTA_EXCEEDED
    assert "User Rate Limit Exceeded" in analysis.technical_detail


def test_analyze_reads_httpx_response_status() -> None:
    request = httpx.Request("POST", "https://example.test")
    response = httpx.Response(504, request=request)
    exc = httpx.HTTPStatusError("gateway timeout", request=request, response=response)
    assert analyze_error(exc).category is ErrorCategory.RETRYABLE


def test_prompt_block_without_status() -> None:
    analysis = analyze_error(BackendError(None, "Prompt blocked by safety filters: SAFETY"))
    assert analysis.category is ErrorCategory.PROMPT_BLOCKED


@pytest.mark.parametrize("reason", ["SAFETY", "RECITATION", "MAX_TOKENS", "OTHER"])
def test_finish_reason_annotations(reason: str) -> None:
    note = finish_reason_annotation(reason)
    assert note is not None
    assert note.startswith("\n\n")


@pytest.mark.parametrize("reason", ["STOP", None, "", "SOMETHING_NEW"])
def test_normal_finish_has_no_annotation(reason: str | None) -> None:
    assert finish_reason_annotation(reason) is None
