"""Debounced off-device backup of changed conversations."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from branchchat.utils import utc_timestamp

if TYPE_CHECKING:
    from collections.abc import Sequence

    from branchchat.models.nodes import ConversationMeta, Node
    from branchchat.models.settings import SettingsStore
    from branchchat.storage.repository import ConversationRepository

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 5.0
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class BackupTarget(Protocol):
    """Destination for conversation snapshots."""

    async def upload(
        self, meta: ConversationMeta, nodes: Sequence[Node], *, manual: bool = False
    ) -> None: ...


class DirectoryBackupTarget:
    """Write one JSON document per conversation into a directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def path_for(self, conversation_id: str) -> Path:
        return self._root / f"{_UNSAFE_CHARS.sub('_', conversation_id)}.json"

    async def upload(
        self, meta: ConversationMeta, nodes: Sequence[Node], *, manual: bool = False
    ) -> None:
        document = {
            "session": meta.to_dict(),
            "logs": [node.to_dict() for node in nodes],
            "backedUpAt": utc_timestamp(),
            "manual": manual,
        }
        payload = json.dumps(document, ensure_ascii=False, indent=2)
        await asyncio.to_thread(self._write, self.path_for(meta.id), payload)

    def _write(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(path)


class BackupManager:
    """Collect changed conversation ids and upload them after a quiet period."""

    def __init__(
        self,
        repository: ConversationRepository,
        target: BackupTarget,
        settings_store: SettingsStore,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self._repository = repository
        self._target = target
        self._settings_store = settings_store
        self._debounce_seconds = debounce_seconds
        self._pending: set[str] = set()
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> frozenset[str]:
        return frozenset(self._pending)

    def notify_change(self, conversation_id: str) -> None:
        """Queue a conversation for the next automatic backup."""
        if not self._settings_store.value.backup.is_enabled:
            return
        self._pending.add(conversation_id)
        if self._task is not None and not self._task.done():
            self._task.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; backup of %s deferred", conversation_id)
            return
        self._task = loop.create_task(self._delayed_backup())

    async def _delayed_backup(self) -> None:
        await asyncio.sleep(self._debounce_seconds)
        self._task = None
        await self.perform_backup()

    async def force_backup_all(self) -> None:
        """Upload every stored conversation now."""
        for meta in self._repository.list_conversations():
            self._pending.add(meta.id)
        await self.perform_backup(manual=True)

    async def perform_backup(self, *, manual: bool = False) -> int:
        """Upload all pending conversations; return how many were written.

        Failures are logged; pending ids are not requeued.
        """
        if not self._pending:
            return 0
        ids = sorted(self._pending)
        self._pending.clear()

        uploaded = 0
        try:
            for conversation_id in ids:
                meta = self._repository.get_conversation(conversation_id)
                if meta is None:
                    continue
                nodes = self._repository.list_nodes(conversation_id)
                await self._target.upload(meta, nodes, manual=manual)
                uploaded += 1
        except Exception:
            logger.exception("Backup failed after %d of %d conversations", uploaded, len(ids))
            return uploaded

        backup = self._settings_store.value.backup.model_copy(
            update={"last_backup_at": utc_timestamp()}
        )
        self._settings_store.update(backup=backup)
        logger.info("Backed up %d conversations", uploaded)
        return uploaded

    async def flush(self) -> None:
        """Run any pending automatic backup immediately."""
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self.perform_backup()
