"""Conversation session state machine and its collaborators."""

from branchchat.session.cancellation import CancellationToken, GenerationCancelled
from branchchat.session.chat import (
    ConversationSession,
    GenerationOutcome,
    RegenerationRejected,
    SendResult,
    SendState,
    SessionBusyError,
)
from branchchat.session.listener import SessionListener
from branchchat.session.token_counter import TokenCounter

__all__ = [
    "CancellationToken",
    "ConversationSession",
    "GenerationCancelled",
    "GenerationOutcome",
    "RegenerationRejected",
    "SendResult",
    "SendState",
    "SessionBusyError",
    "SessionListener",
    "TokenCounter",
]
