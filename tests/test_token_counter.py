from __future__ import annotations

import asyncio

import pytest
from branchchat.composer.composer import MessageComposer
from branchchat.models.settings import SettingsStore, UiSettings
from branchchat.session.token_counter import TokenCounter

from tests.helpers import FakeBackend, RecordingSleep, make_node


class GatedBackend(FakeBackend):
    """Backend whose first count waits for a release signal."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.results = [100, 7]

    async def count_tokens(self, **kwargs) -> int:
        self.count_calls.append(kwargs)
        result = self.results.pop(0)
        if len(self.count_calls) == 1:
            self.started.set()
            await self.release.wait()
        return result


def _counter(backend, store) -> TokenCounter:
    return TokenCounter(backend, MessageComposer(), store, sleep=RecordingSleep())


@pytest.mark.asyncio
async def test_rapid_requests_coalesce(store) -> None:
    backend = FakeBackend()
    counter = _counter(backend, store)

    counter.request_count([], "h")
    counter.request_count([], "he")
    counter.request_count([], "hello")
    assert counter.is_loading
    await counter.wait_idle()

    assert len(backend.count_calls) == 1
    assert backend.count_calls[0]["api_key"] == "secret-1"
    assert backend.count_calls[0]["contents"] == [{"role": "user", "parts": [{"text": "hello"}]}]
    assert counter.count == 42
    assert not counter.is_loading


@pytest.mark.asyncio
async def test_superseded_result_is_discarded(store) -> None:
    backend = GatedBackend()
    counter = _counter(backend, store)
    history = [make_node("u1", text="earlier")]

    counter.request_count(history, "first")
    await backend.started.wait()
    counter.request_count(history, "second")
    backend.release.set()
    await counter.wait_idle()
    await asyncio.sleep(0)
    await counter.wait_idle()

    assert len(backend.count_calls) == 2
    assert counter.count == 7


@pytest.mark.asyncio
async def test_empty_input_resets_without_backend_call(store) -> None:
    backend = FakeBackend()
    counter = _counter(backend, store)
    counter.count = 12

    counter.request_count([], "")

    assert counter.count == 0
    assert not counter.is_loading
    await counter.wait_idle()
    assert backend.count_calls == []


@pytest.mark.asyncio
async def test_disabled_display_skips_counting(store) -> None:
    store.update(ui=UiSettings(show_token_count=False))
    backend = FakeBackend()
    counter = _counter(backend, store)

    counter.request_count([], "hello")
    await counter.wait_idle()

    assert backend.count_calls == []
    assert counter.count == 0


@pytest.mark.asyncio
async def test_missing_key_leaves_count_unchanged() -> None:
    backend = FakeBackend()
    counter = _counter(backend, SettingsStore())
    counter.request_count([], "hello")
    await counter.wait_idle()
    assert backend.count_calls == []
    assert counter.count == 0


@pytest.mark.asyncio
async def test_stop_cancels_pending_work(store) -> None:
    backend = GatedBackend()
    counter = _counter(backend, store)
    counter.request_count([], "hello")
    await backend.started.wait()

    await counter.stop()

    assert not counter.is_loading
    assert counter.count == 0
