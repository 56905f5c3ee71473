from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from branchchat.models.nodes import Attachment, ConversationMeta, Node, TokenUsage
from branchchat.utils import new_id, utc_timestamp

logger = logging.getLogger(__name__)

COPY_SUFFIX = " (copy)"

NODE_COLUMNS = """id, conversation_id, speaker, text, timestamp, parent_id, active_child_id,
                  metadata, token_usage, reasoning, attachments"""


class ConversationNotFoundError(LookupError):
    """Raised when an operation targets a conversation that does not exist."""


class SQLiteRepository:
    """SQLite-backed storage for conversations and nodes."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialize storage and ensure tables exist."""
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def save_node(self, node: Node) -> None:
        """Persist a node, replacing any row with the same id."""
        self._execute(
            f"""INSERT INTO nodes ({NODE_COLUMNS})
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   conversation_id = excluded.conversation_id,
                   speaker = excluded.speaker,
                   text = excluded.text,
                   timestamp = excluded.timestamp,
                   parent_id = excluded.parent_id,
                   active_child_id = excluded.active_child_id,
                   metadata = excluded.metadata,
                   token_usage = excluded.token_usage,
                   reasoning = excluded.reasoning,
                   attachments = excluded.attachments""",
            _node_params(node),
        )

    def update_node_text(self, node_id: str, text: str) -> None:
        self._execute("UPDATE nodes SET text = ? WHERE id = ?", (text, node_id))

    def update_node_parent(self, node_id: str, parent_id: str | None) -> None:
        self._execute("UPDATE nodes SET parent_id = ? WHERE id = ?", (parent_id, node_id))

    def update_active_child(self, node_id: str, child_id: str | None) -> None:
        self._execute("UPDATE nodes SET active_child_id = ? WHERE id = ?", (child_id, node_id))

    def update_node_metadata(self, node_id: str, metadata: dict[str, Any] | None) -> None:
        self._execute(
            "UPDATE nodes SET metadata = ? WHERE id = ?", (_dump_json(metadata), node_id)
        )

    def delete_node(self, node_id: str) -> None:
        self._execute("DELETE FROM nodes WHERE id = ?", (node_id,))

    def list_nodes(self, conversation_id: str) -> list[Node]:
        """Return nodes for a conversation ordered by timestamp, then insertion."""
        rows = self._fetch_all(
            f"""SELECT {NODE_COLUMNS} FROM nodes
               WHERE conversation_id = ? ORDER BY timestamp ASC, rowid ASC""",
            (conversation_id,),
        )
        return [_row_to_node(row) for row in rows]

    def create_or_touch_conversation(self, conversation_id: str, title: str) -> ConversationMeta:
        """Create a conversation if it doesn't exist; otherwise bump its update time."""
        now = utc_timestamp()
        self._execute(
            """INSERT INTO conversations (id, title, created_at, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET updated_at = excluded.updated_at""",
            (conversation_id, title, now, now),
        )
        return self._require(conversation_id)

    def update_conversation_title(self, conversation_id: str, title: str) -> ConversationMeta:
        """Rename a conversation, creating it when absent."""
        now = utc_timestamp()
        self._execute(
            """INSERT INTO conversations (id, title, created_at, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   title = excluded.title, updated_at = excluded.updated_at""",
            (conversation_id, title, now, now),
        )
        return self._require(conversation_id)

    def touch_conversation(self, conversation_id: str) -> None:
        self._execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (utc_timestamp(), conversation_id),
        )

    def get_conversation(self, conversation_id: str) -> ConversationMeta | None:
        """Fetch conversation metadata by ID."""
        rows = self._fetch_all(
            "SELECT id, title, created_at, updated_at FROM conversations WHERE id = ?",
            (conversation_id,),
        )
        if not rows:
            return None
        return ConversationMeta(*rows[0])

    def list_conversations(self) -> list[ConversationMeta]:
        """Return all conversations ordered by most recent update."""
        rows = self._fetch_all(
            """SELECT id, title, created_at, updated_at
               FROM conversations ORDER BY updated_at DESC, rowid DESC"""
        )
        return [ConversationMeta(*row) for row in rows]

    def latest_conversation_id(self) -> str | None:
        conversations = self.list_conversations()
        return conversations[0].id if conversations else None

    def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation and its nodes in one transaction."""
        with self._connect() as conn:
            conn.execute("DELETE FROM nodes WHERE conversation_id = ?", (conversation_id,))
            conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))

    def duplicate_conversation(self, conversation_id: str) -> ConversationMeta:
        """Copy a conversation with fresh ids; node timestamps are preserved."""
        source = self.get_conversation(conversation_id)
        if source is None:
            msg = f"Conversation not found: {conversation_id}"
            raise ConversationNotFoundError(msg)

        nodes = self.list_nodes(conversation_id)
        new_conversation_id = new_id()
        id_map = {node.id: new_id() for node in nodes}
        now = utc_timestamp()
        meta = ConversationMeta(
            id=new_conversation_id,
            title=f"{source.title}{COPY_SUFFIX}",
            created_at=now,
            updated_at=now,
        )

        with self._connect() as conn:
            conn.execute(
                """INSERT INTO conversations (id, title, created_at, updated_at)
                   VALUES (?, ?, ?, ?)""",
                (meta.id, meta.title, meta.created_at, meta.updated_at),
            )
            for node in nodes:
                copy = Node.from_dict(node.to_dict())
                copy.id = id_map[node.id]
                copy.conversation_id = new_conversation_id
                copy.parent_id = id_map.get(node.parent_id) if node.parent_id else None
                copy.active_child_id = (
                    id_map.get(node.active_child_id) if node.active_child_id else None
                )
                conn.execute(
                    f"INSERT INTO nodes ({NODE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    _node_params(copy),
                )
        logger.info(
            "Duplicated conversation %s into %s (%d nodes)",
            conversation_id,
            new_conversation_id,
            len(nodes),
        )
        return meta

    def _require(self, conversation_id: str) -> ConversationMeta:
        meta = self.get_conversation(conversation_id)
        if meta is None:
            msg = f"Conversation not found: {conversation_id}"
            raise ConversationNotFoundError(msg)
        return meta

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS conversations (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS nodes (
                    id TEXT PRIMARY KEY,
                    conversation_id TEXT NOT NULL,
                    speaker TEXT NOT NULL,
                    text TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    parent_id TEXT,
                    active_child_id TEXT,
                    metadata TEXT,
                    token_usage TEXT,
                    reasoning TEXT,
                    attachments TEXT
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_nodes_conversation ON nodes (conversation_id)"
            )

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _fetch_all(self, query: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        with self._connect() as conn:
            cursor = conn.execute(query, params)
            return cursor.fetchall()

    def _execute(self, query: str, params: tuple[Any, ...]) -> None:
        with self._connect() as conn:
            conn.execute(query, params)
            conn.commit()


def _dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def _node_params(node: Node) -> tuple[Any, ...]:
    return (
        node.id,
        node.conversation_id,
        node.speaker,
        node.text,
        node.timestamp,
        node.parent_id,
        node.active_child_id,
        _dump_json(node.metadata),
        _dump_json(node.token_usage.to_dict() if node.token_usage else None),
        node.reasoning,
        _dump_json([attachment.to_dict() for attachment in node.attachments]),
    )


def _row_to_node(row: tuple[Any, ...]) -> Node:
    return Node(
        id=row[0],
        conversation_id=row[1],
        speaker=row[2],
        text=row[3],
        timestamp=row[4],
        parent_id=row[5],
        active_child_id=row[6],
        metadata=json.loads(row[7]) if row[7] else None,
        token_usage=TokenUsage.from_dict(json.loads(row[8])) if row[8] else None,
        reasoning=row[9],
        attachments=[Attachment.from_dict(item) for item in json.loads(row[10] or "[]")],
    )
