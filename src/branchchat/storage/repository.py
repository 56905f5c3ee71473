"""Durable store contract for conversations and their nodes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from branchchat.models.nodes import ConversationMeta, Node


class ConversationRepository(Protocol):
    """Synchronous persistence used by the conversation session."""

    def save_node(self, node: Node) -> None:
        """Insert or replace a node by id."""
        ...

    def update_node_text(self, node_id: str, text: str) -> None: ...

    def update_node_parent(self, node_id: str, parent_id: str | None) -> None: ...

    def update_active_child(self, node_id: str, child_id: str | None) -> None: ...

    def update_node_metadata(self, node_id: str, metadata: dict | None) -> None: ...

    def delete_node(self, node_id: str) -> None: ...

    def list_nodes(self, conversation_id: str) -> list[Node]:
        """Return nodes ordered by timestamp, then insertion order."""
        ...

    def create_or_touch_conversation(self, conversation_id: str, title: str) -> ConversationMeta:
        """Create metadata with ``title`` if absent; otherwise bump ``updated_at``."""
        ...

    def update_conversation_title(self, conversation_id: str, title: str) -> ConversationMeta:
        """Set the title, creating the metadata when absent."""
        ...

    def touch_conversation(self, conversation_id: str) -> None: ...

    def get_conversation(self, conversation_id: str) -> ConversationMeta | None: ...

    def list_conversations(self) -> list[ConversationMeta]:
        """Return conversations, most recently updated first."""
        ...

    def latest_conversation_id(self) -> str | None: ...

    def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation and all of its nodes atomically."""
        ...

    def duplicate_conversation(self, conversation_id: str) -> ConversationMeta:
        """Deep-copy a conversation under fresh ids, atomically."""
        ...
