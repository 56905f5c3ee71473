from __future__ import annotations

import pytest
from branchchat.generation.orchestrator import GenerationOrchestrator
from branchchat.models.settings import (
    ApiErrorHandlingSettings,
    ApiKey,
    AppSettings,
    SettingsStore,
)
from branchchat.session.chat import ConversationSession
from branchchat.session.listener import SessionListener
from branchchat.storage.sqlite import SQLiteRepository

from tests.helpers import FakeBackend, RecordingSleep, ScriptedListener


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "BRANCHCHAT_API_KEYS",
        "BRANCHCHAT_MODEL",
        "BRANCHCHAT_SETTINGS_PATH",
        "BRANCHCHAT_DATA_DIR",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        api_keys=[
            ApiKey(id="k1", name="first", key="secret-1"),
            ApiKey(id="k2", name="second", key="secret-2"),
        ],
        active_api_key_id="k1",
        model="gemini-test",
        api_error_handling=ApiErrorHandlingSettings(
            loop_api_keys=True, exponential_backoff=True, max_retries=3, initial_wait_seconds=1.0
        ),
    )


@pytest.fixture
def store(settings: AppSettings) -> SettingsStore:
    return SettingsStore(settings)


@pytest.fixture
def repository(tmp_path) -> SQLiteRepository:
    return SQLiteRepository(tmp_path / "chat.db")


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_session(repository, store, recording_sleep):
    def factory(
        backend: FakeBackend, listener: SessionListener | None = None
    ) -> ConversationSession:
        return ConversationSession(
            repository,
            GenerationOrchestrator(backend),
            store,
            listener=listener or ScriptedListener(),
            sleep=recording_sleep,
        )

    return factory
