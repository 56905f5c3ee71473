"""Compose persisted user text and backend payloads for a turn."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from branchchat.composer.hidden import extract_visible, join_hidden, split_hidden, strip_separator
from branchchat.composer.rollers import (
    DEFAULT_END_MARKER,
    DEFAULT_START_MARKER,
    ChoiceRoller,
    DiceRoller,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from branchchat.models.nodes import Attachment, Node
    from branchchat.models.settings import AppSettings, MarkerSettings

DEFAULT_HIDDEN_KEY = "Dice"
SPEAKER_LABELS = {"user": "User", "model": "Model"}

Part = dict[str, Any]
Content = dict[str, Any]


@dataclass(frozen=True)
class ComposedMessage:
    """Text to persist for a user turn and its backend content parts."""

    text: str
    api_content: list[Part]


def attachment_parts(attachments: Iterable[Attachment]) -> list[Part]:
    """Render attachments as payload parts, skipping ones without data."""
    parts: list[Part] = []
    for attachment in attachments:
        part = attachment.to_part()
        if part is not None:
            parts.append(part)
    return parts


def parse_key_values(raw: str) -> str:
    """Encode ``key:value`` tokens as compact JSON.

    Tokens are whitespace-delimited and split at their first colon. A token
    without a key continues the previous value, so ``Outcome:Critical failure``
    keeps both words; keyless tokens before the first key are dropped. When no
    token qualifies the whole text is kept under a single default key.
    """
    result: dict[str, str] = {}
    key: str | None = None
    for segment in raw.strip().split():
        index = segment.find(":")
        if index > 0:
            key = segment[:index]
            result[key] = segment[index + 1 :]
        elif key is not None:
            result[key] = f"{result[key]} {segment}"
    if not result:
        result = {DEFAULT_HIDDEN_KEY: raw}
    return json.dumps(result, ensure_ascii=False, separators=(",", ":"))


class MessageComposer:
    """Build persisted text and backend payloads.

    Hidden instruction blocks produced by the dice and choice rollers are kept
    before the separator so they survive edits and stay out of the visible
    transcript.
    """

    def __init__(
        self,
        dice_roller: DiceRoller | None = None,
        choice_roller: ChoiceRoller | None = None,
    ) -> None:
        self._dice = dice_roller or DiceRoller()
        self._choices = choice_roller or ChoiceRoller()

    def hidden_part(self, user_text: str, settings: AppSettings) -> str:
        """Roll every enabled generator; dice block first, then choices."""
        dice = self._dice.render(settings.dice_rolls, settings.dice_roll_markers, user_text)
        choices = self._choices.render(
            settings.custom_choice_rolls, settings.custom_choice_markers, user_text
        )
        return dice + choices

    def compose(
        self,
        user_text: str,
        settings: AppSettings,
        attachments: Sequence[Attachment] = (),
    ) -> ComposedMessage:
        """Compose a new user turn from raw input."""
        text = join_hidden(self.hidden_part(user_text, settings), user_text)
        return ComposedMessage(
            text=text,
            api_content=self.create_api_payload(text, settings, attachments),
        )

    def recompose(self, stored_text: str, settings: AppSettings) -> str:
        """Re-roll hidden instructions for stored text, keeping its visible part."""
        return self.compose(extract_visible(stored_text), settings).text

    def create_api_payload(
        self,
        full_text: str,
        settings: AppSettings,
        attachments: Sequence[Attachment] = (),
    ) -> list[Part]:
        """Render persisted text plus attachments as backend content parts."""
        parts: list[Part] = []
        hidden, visible = split_hidden(full_text)
        use_multipart = (
            settings.dice_roll_markers.use_multipart or settings.custom_choice_markers.use_multipart
        )

        if hidden is not None and use_multipart:
            parts.append({"text": self._hidden_segment(hidden, settings)})
            if visible:
                parts.append({"text": visible})
        else:
            processed = strip_separator(full_text)
            if processed:
                parts.append({"text": processed})

        parts.extend(attachment_parts(attachments))
        return parts

    def _hidden_segment(self, hidden: str, settings: AppSettings) -> str:
        """Strip roller markers; encode as JSON only in the marked dice format."""
        raw = hidden
        for markers in (settings.dice_roll_markers, settings.custom_choice_markers):
            if markers.is_enabled:
                raw = _strip_markers(raw, markers)
        raw = " ".join(raw.split())
        if settings.dice_roll_markers.is_enabled:
            return parse_key_values(raw)
        return raw

    def format_history(self, nodes: Iterable[Node]) -> list[Content]:
        """One role-tagged entry per node, hidden parts folded into the text."""
        history: list[Content] = []
        for node in nodes:
            parts: list[Part] = [{"text": strip_separator(node.text)}]
            parts.extend(attachment_parts(node.attachments))
            history.append({"role": "user" if node.speaker == "user" else "model", "parts": parts})
        return history

    def format_combined_history(
        self,
        nodes: Iterable[Node],
        draft_text: str | None = None,
        draft_attachments: Sequence[Attachment] = (),
    ) -> list[Content]:
        """Fold the whole history (and the draft) into one synthetic user entry."""
        lines: list[str] = []
        attachments: list[Part] = []
        for node in nodes:
            lines.append(f"{SPEAKER_LABELS[node.speaker]}: {strip_separator(node.text)}")
            attachments.extend(attachment_parts(node.attachments))
        if draft_text is not None:
            draft = strip_separator(draft_text)
            if draft:
                lines.append(f"{SPEAKER_LABELS['user']}: {draft}")
        attachments.extend(attachment_parts(draft_attachments))

        if not lines and not attachments:
            return []
        parts: list[Part] = []
        if lines:
            parts.append({"text": "\n".join(lines)})
        parts.extend(attachments)
        return [{"role": "user", "parts": parts}]

    def build_request(
        self,
        history: Sequence[Node],
        text: str,
        attachments: Sequence[Attachment],
        settings: AppSettings,
    ) -> tuple[list[Content], list[Part]]:
        """Return ``(api_history, content)`` for the configured history mode.

        In combined mode the current turn is folded into the history and the
        content is empty.
        """
        if settings.assist.use_combined_history_format:
            return self.format_combined_history(history, text, attachments), []
        return (
            self.format_history(history),
            self.create_api_payload(text, settings, attachments),
        )


def _strip_markers(text: str, markers: MarkerSettings) -> str:
    # Each marked block becomes its own whitespace-delimited run so unmarked
    # output from the other roller never fuses with it.
    start = re.escape(markers.start or DEFAULT_START_MARKER)
    end = re.escape(markers.end or DEFAULT_END_MARKER)
    return re.sub(f"{start}(.*?){end}", r" \1 ", text, flags=re.DOTALL)
