"""Conversation persistence."""

from branchchat.storage.repository import ConversationRepository
from branchchat.storage.sqlite import ConversationNotFoundError, SQLiteRepository

__all__ = ["ConversationNotFoundError", "ConversationRepository", "SQLiteRepository"]
