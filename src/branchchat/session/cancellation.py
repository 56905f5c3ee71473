"""Cooperative cancellation for one outstanding send or regenerate."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


class GenerationCancelled(Exception):
    """Raised from a suspension point after the token fired."""


class CancellationToken:
    """A one-shot signal threaded through every suspension point."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        When the token wins the awaitable is cancelled and drained, then
        GenerationCancelled is raised.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            await asyncio.gather(task, waiter, return_exceptions=True)
            raise

        if not waiter.done():
            waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, waiter, return_exceptions=True)
            raise GenerationCancelled
        await asyncio.gather(waiter, return_exceptions=True)
        return task.result()

    async def sleep(
        self,
        delay: float,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Wait ``delay`` seconds; raise GenerationCancelled if the token fires."""
        await self.run(sleep(delay))
