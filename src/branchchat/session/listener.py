"""Hooks through which the session asks for and reports user-facing decisions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from branchchat.generation.classifier import ErrorAnalysis
    from branchchat.models.nodes import Attachment
    from branchchat.models.settings import ApiKey
    from branchchat.session.chat import SendState


class SessionListener:
    """Default listener: declines rotation, keeps going on everything else.

    Subclasses override the hooks a front end cares about. The ``confirm_*``
    hooks are suspension points of the send protocol.
    """

    async def confirm_key_rotation(self, current: ApiKey | None, upcoming: ApiKey) -> bool:
        """Ask whether to retry with the next credential after a quota error."""
        return False

    async def confirm_drop_expired(self, expired: Sequence[Attachment]) -> bool:
        """Ask whether to send without attachments whose file references expired."""
        return True

    def acknowledge_error(self, analysis: ErrorAnalysis) -> None:
        """Report a terminal failure that was committed as an error node."""

    def cost_alert(self, threshold: float) -> None:
        """Report that accumulated usage crossed the configured threshold."""

    def state_changed(self, state: SendState) -> None:
        """Observe state machine transitions."""
