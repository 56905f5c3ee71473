"""Branching conversation client for the Gemini generation API."""

from branchchat.composer import MessageComposer
from branchchat.generation import (
    BackendError,
    ConfigurationError,
    GeminiClient,
    GenerationOrchestrator,
)
from branchchat.models import AppSettings, Attachment, Node, SettingsStore, load_settings
from branchchat.session import (
    ConversationSession,
    GenerationOutcome,
    RegenerationRejected,
    SendResult,
    SessionBusyError,
    SessionListener,
    TokenCounter,
)
from branchchat.storage import SQLiteRepository

__version__ = "0.1.0"

__all__ = [
    "AppSettings",
    "Attachment",
    "BackendError",
    "ConfigurationError",
    "ConversationSession",
    "GeminiClient",
    "GenerationOrchestrator",
    "GenerationOutcome",
    "MessageComposer",
    "Node",
    "RegenerationRejected",
    "SQLiteRepository",
    "SendResult",
    "SessionBusyError",
    "SessionListener",
    "TokenCounter",
    "load_settings",
]
