"""Debounced prompt-size estimate for the current draft."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from branchchat.composer.composer import MessageComposer
    from branchchat.generation.backend import GenerationBackend
    from branchchat.models.nodes import Attachment, Node
    from branchchat.models.settings import SettingsStore

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0


class TokenCounter:
    """Recompute the token count once input has been quiet for a while.

    Every request re-arms the quiet-period timer. A count already in flight
    is left to finish, but its result is discarded if a newer request was
    made in the meantime.
    """

    def __init__(
        self,
        backend: GenerationBackend,
        composer: MessageComposer,
        settings_store: SettingsStore,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._composer = composer
        self._settings_store = settings_store
        self._debounce_seconds = debounce_seconds
        self._sleep = sleep
        self._timer: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._sequence = 0
        self.count = 0
        self.is_loading = False

    def request_count(
        self,
        history: Sequence[Node],
        draft: str,
        attachments: Sequence[Attachment] = (),
    ) -> None:
        """Schedule a recount for the given history and draft."""
        if not self._settings_store.value.ui.show_token_count:
            return

        self._sequence += 1
        self._cancel_timer()

        if not draft and not history and not attachments:
            self.count = 0
            self.is_loading = False
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; token count skipped")
            return
        self.is_loading = True
        self._timer = loop.create_task(
            self._debounced(self._sequence, list(history), draft, list(attachments))
        )

    async def _debounced(
        self,
        sequence: int,
        history: list[Node],
        draft: str,
        attachments: list[Attachment],
    ) -> None:
        await self._sleep(self._debounce_seconds)
        task = asyncio.current_task()
        if task is not None:
            if self._timer is task:
                self._timer = None
            self._in_flight.add(task)
        try:
            await self._count(sequence, history, draft, attachments)
        finally:
            if task is not None:
                self._in_flight.discard(task)
            if sequence == self._sequence:
                self.is_loading = False

    async def _count(
        self,
        sequence: int,
        history: list[Node],
        draft: str,
        attachments: list[Attachment],
    ) -> None:
        settings = self._settings_store.value
        api_key = settings.active_api_key()
        if api_key is None or not api_key.key:
            return

        contents = self._composer.format_history(history)
        composed = self._composer.compose(draft, settings)
        parts = self._composer.create_api_payload(composed.text, settings, attachments)
        if parts:
            contents.append({"role": "user", "parts": parts})

        try:
            total = await self._backend.count_tokens(
                api_key=api_key.key,
                model=settings.model,
                contents=contents,
                system_instruction=settings.system_prompt.active_text(),
            )
        except Exception:
            logger.exception("Token count failed")
            return

        if sequence != self._sequence:
            logger.debug("Discarding superseded token count (request %d)", sequence)
            return
        self.count = total

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def wait_idle(self) -> None:
        """Wait until the scheduled and in-flight recounts have settled."""
        pending = [task for task in (self._timer, *self._in_flight) if task is not None]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def stop(self) -> None:
        """Cancel pending and in-flight recounts."""
        pending = [task for task in (self._timer, *self._in_flight) if task is not None]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._timer = None
        self._in_flight.clear()
        self.is_loading = False
