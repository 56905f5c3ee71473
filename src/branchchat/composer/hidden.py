"""Hidden/visible boundary inside persisted user text.

Persisted text is ``hidden + HIDDEN_SEPARATOR + visible``. Only the first
separator counts; anything after it, separators included, is visible text.
"""

from __future__ import annotations

HIDDEN_SEPARATOR = ":::DICE_SEP:::"


def split_hidden(text: str) -> tuple[str | None, str]:
    """Split persisted text into ``(hidden, visible)``; hidden is None if absent."""
    if HIDDEN_SEPARATOR not in text:
        return None, text
    hidden, visible = text.split(HIDDEN_SEPARATOR, 1)
    return hidden, visible


def extract_visible(text: str) -> str:
    """Return the user-editable part of persisted text."""
    return split_hidden(text)[1]


def join_hidden(hidden: str, visible: str) -> str:
    """Build persisted text from a hidden prefix and visible text."""
    if not hidden:
        return visible
    return f"{hidden}{HIDDEN_SEPARATOR}{visible}"


def merge_hidden(original_text: str, new_visible: str) -> str:
    """Replace the visible part of ``original_text`` and keep its hidden prefix."""
    hidden, _ = split_hidden(original_text)
    if hidden is None:
        return new_visible
    return f"{hidden}{HIDDEN_SEPARATOR}{new_visible}"


def strip_separator(text: str) -> str:
    """Remove the boundary so hidden and visible parts read as one text."""
    return text.replace(HIDDEN_SEPARATOR, "", 1)
