from __future__ import annotations

import json

import pytest
from branchchat.backup.manager import BackupManager, DirectoryBackupTarget
from branchchat.models.settings import BackupSettings

from tests.helpers import make_node


class FailingTarget:
    def __init__(self) -> None:
        self.calls = 0

    async def upload(self, meta, nodes, *, manual=False) -> None:
        self.calls += 1
        raise OSError("disk full")


def _seed(repository) -> None:
    repository.create_or_touch_conversation("conv", "Story")
    repository.save_node(make_node("u1", text="hello"))
    repository.create_or_touch_conversation("other", "Other")


@pytest.mark.asyncio
async def test_notify_is_ignored_when_disabled(repository, store, tmp_path) -> None:
    manager = BackupManager(repository, DirectoryBackupTarget(tmp_path / "backup"), store)
    manager.notify_change("conv")
    assert manager.pending == frozenset()


@pytest.mark.asyncio
async def test_force_backup_writes_every_conversation(repository, store, tmp_path) -> None:
    _seed(repository)
    target = DirectoryBackupTarget(tmp_path / "backup")
    manager = BackupManager(repository, target, store)

    await manager.force_backup_all()

    document = json.loads(target.path_for("conv").read_text(encoding="utf-8"))
    assert document["session"]["title"] == "Story"
    assert [log["id"] for log in document["logs"]] == ["u1"]
    assert document["manual"] is True
    assert target.path_for("other").exists()
    assert store.value.backup.last_backup_at is not None
    assert manager.pending == frozenset()


@pytest.mark.asyncio
async def test_debounced_changes_flush_once(repository, store, tmp_path) -> None:
    _seed(repository)
    store.update(backup=BackupSettings(is_enabled=True))
    target = DirectoryBackupTarget(tmp_path / "backup")
    manager = BackupManager(repository, target, store, debounce_seconds=60)

    manager.notify_change("conv")
    manager.notify_change("conv")
    assert manager.pending == frozenset({"conv"})

    await manager.flush()

    document = json.loads(target.path_for("conv").read_text(encoding="utf-8"))
    assert document["manual"] is False
    assert not target.path_for("other").exists()
    assert manager.pending == frozenset()


@pytest.mark.asyncio
async def test_failed_upload_does_not_record_backup_time(repository, store) -> None:
    _seed(repository)
    target = FailingTarget()
    manager = BackupManager(repository, target, store)

    await manager.force_backup_all()

    assert target.calls == 1
    assert store.value.backup.last_backup_at is None
    assert manager.pending == frozenset()


def test_path_for_sanitizes_ids(tmp_path) -> None:
    target = DirectoryBackupTarget(tmp_path)
    assert target.path_for("../evil id").name == ".._evil_id.json"
