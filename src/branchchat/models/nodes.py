"""Conversation node models for the branching transcript."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from branchchat.utils import drop_none

Speaker = Literal["user", "model"]
StorageType = Literal["inline", "file"]


@dataclass(frozen=True)
class TokenUsage:
    """Token counters reported for one generation."""

    input: int = 0
    output: int = 0
    total: int = 0
    cached: int = 0
    thinking: int = 0

    @classmethod
    def from_usage_metadata(cls, usage: dict[str, Any] | None) -> TokenUsage:
        """Build counters from a backend ``usageMetadata`` payload."""
        usage = usage or {}
        return cls(
            input=int(usage.get("promptTokenCount") or 0),
            output=int(usage.get("candidatesTokenCount") or 0),
            total=int(usage.get("totalTokenCount") or 0),
            cached=int(usage.get("cachedContentTokenCount") or 0),
            thinking=int(usage.get("thoughtsTokenCount") or 0),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input": self.input,
            "output": self.output,
            "total": self.total,
            "cached": self.cached,
            "thinking": self.thinking,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TokenUsage:
        return cls(**{key: int(raw.get(key) or 0) for key in cls.__dataclass_fields__})


@dataclass(frozen=True)
class Attachment:
    """File attached to a user turn.

    Small files travel inline as base64 ``data``; large files are referenced by
    an external ``file_uri`` that may expire.
    """

    id: str
    name: str
    mime_type: str
    storage_type: StorageType = "inline"
    data: str | None = None
    file_uri: str | None = None
    expiration: str | None = None

    def is_expired(self, now: datetime) -> bool:
        """Return True when a file reference has passed its expiration."""
        if self.storage_type != "file" or not self.expiration:
            return False
        expires_at = datetime.fromisoformat(self.expiration)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return expires_at <= now

    def to_part(self) -> dict[str, Any] | None:
        """Render the attachment as a backend content part."""
        if self.storage_type == "inline" and self.data:
            return {"inlineData": {"mimeType": self.mime_type, "data": self.data}}
        if self.storage_type == "file" and self.file_uri:
            return {"fileData": {"mimeType": self.mime_type, "fileUri": self.file_uri}}
        return None

    def to_dict(self) -> dict[str, Any]:
        return drop_none(
            {
                "id": self.id,
                "name": self.name,
                "mimeType": self.mime_type,
                "storageType": self.storage_type,
                "data": self.data,
                "fileUri": self.file_uri,
                "expiration": self.expiration,
            }
        )

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Attachment:
        return cls(
            id=raw["id"],
            name=raw.get("name", ""),
            mime_type=raw.get("mimeType", "application/octet-stream"),
            storage_type=raw.get("storageType", "inline"),
            data=raw.get("data"),
            file_uri=raw.get("fileUri"),
            expiration=raw.get("expiration"),
        )


@dataclass
class Node:
    """A single conversation turn.

    Relationships are id references only: ``parent_id`` points at the turn this
    one replies to and ``active_child_id`` selects the reply shown on the active
    path. The session is the only writer of these fields.
    """

    id: str
    conversation_id: str
    speaker: Speaker
    text: str
    timestamp: str
    parent_id: str | None = None
    active_child_id: str | None = None
    metadata: dict[str, Any] | None = None
    token_usage: TokenUsage | None = None
    reasoning: str | None = None
    attachments: list[Attachment] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the node to a JSON-compatible dict."""
        data = {
            "id": self.id,
            "conversationId": self.conversation_id,
            "speaker": self.speaker,
            "text": self.text,
            "timestamp": self.timestamp,
            "parentId": self.parent_id,
            "activeChildId": self.active_child_id,
            "metadata": self.metadata,
            "tokenUsage": self.token_usage.to_dict() if self.token_usage else None,
            "reasoning": self.reasoning,
            "attachments": [attachment.to_dict() for attachment in self.attachments],
        }
        return drop_none(data, keep={"parentId", "activeChildId"})

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Node:
        """Deserialize a node from its JSON payload."""
        usage = raw.get("tokenUsage")
        return cls(
            id=raw["id"],
            conversation_id=raw["conversationId"],
            speaker=raw["speaker"],
            text=raw.get("text", ""),
            timestamp=raw["timestamp"],
            parent_id=raw.get("parentId"),
            active_child_id=raw.get("activeChildId"),
            metadata=raw.get("metadata"),
            token_usage=TokenUsage.from_dict(usage) if usage else None,
            reasoning=raw.get("reasoning"),
            attachments=[Attachment.from_dict(item) for item in raw.get("attachments") or []],
        )


@dataclass(frozen=True)
class ConversationMeta:
    """Conversation-level metadata, independent of individual nodes."""

    id: str
    title: str
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
