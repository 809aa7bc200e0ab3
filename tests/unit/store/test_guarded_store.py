"""Unit tests for the deletion guard.

The guard is best-effort: a crash between the snapshot attempt and the
deletion is outside what these tests (or the guard) can cover.
"""

from __future__ import annotations

import asyncio

import pytest

from core.errors import StorageWriteError
from store.guarded_store import GuardedStore
from store.primary_store import JsonDirectoryPrimaryStore, MemoryPrimaryStore
from tests.fakes import FailingSnapshotter, SlowSecondaryStore, build_manager, make_config


@pytest.mark.asyncio
async def test_delete_protected_key_snapshots_first(tmp_path) -> None:
    """Deleting a protected dataset should leave a new recoverable snapshot."""
    config = make_config(tmp_path)
    primary = MemoryPrimaryStore({"users": [{"id": 1}]})
    manager = build_manager(config, primary)
    guard = GuardedStore(primary, config.protected_keys, manager)
    before = {summary.snapshot_id for summary in manager.list_snapshots()}

    await guard.delete("users")

    snapshot_id = manager.latest_snapshot_id()
    assert snapshot_id is not None and snapshot_id not in before
    assert "users" in manager.get_snapshot(snapshot_id).contents
    assert guard.get("users") is None


@pytest.mark.asyncio
async def test_delete_unprotected_key_skips_snapshot(tmp_path) -> None:
    """Ordinary datasets are deleted without a snapshot."""
    config = make_config(tmp_path)
    primary = MemoryPrimaryStore({"theme": "dark"})
    manager = build_manager(config, primary)
    guard = GuardedStore(primary, config.protected_keys, manager)

    await guard.delete("theme")

    assert manager.list_snapshots() == []
    assert "theme" not in primary


@pytest.mark.asyncio
async def test_delete_proceeds_when_snapshot_fails(tmp_path) -> None:
    """A failed snapshot is logged but does not block the deletion."""
    primary = MemoryPrimaryStore({"users": []})
    snapshotter = FailingSnapshotter()
    guard = GuardedStore(primary, ("users",), snapshotter)

    await guard.delete("users")

    assert snapshotter.calls == 1
    assert "users" not in primary


@pytest.mark.asyncio
async def test_clear_all_snapshots_before_clearing(tmp_path) -> None:
    """Clearing the store should always be preceded by a snapshot."""
    config = make_config(tmp_path)
    primary = MemoryPrimaryStore({"users": [{"id": 1}], "theme": "dark"})
    manager = build_manager(config, primary)
    guard = GuardedStore(primary, config.protected_keys, manager)

    await guard.clear_all()

    assert primary.keys() == []
    assert len(manager.list_snapshots()) == 1


@pytest.mark.asyncio
async def test_clear_all_blocked_without_snapshot() -> None:
    """Clearing must not proceed when no snapshot could be recorded."""
    primary = MemoryPrimaryStore({"users": [{"id": 1}]})
    guard = GuardedStore(primary, ("users",), FailingSnapshotter())

    with pytest.raises(StorageWriteError):
        await guard.clear_all()

    assert primary.get("users") == [{"id": 1}]


@pytest.mark.asyncio
async def test_clear_all_proceeds_with_indexed_copy() -> None:
    """A snapshot that reached the index is enough to allow the clear."""
    primary = MemoryPrimaryStore({"users": [{"id": 1}]})
    guard = GuardedStore(primary, ("users",), FailingSnapshotter(leaves_indexed_copy=True))

    await guard.clear_all()

    assert primary.keys() == []


@pytest.mark.asyncio
async def test_delete_during_running_backup_takes_fresh_snapshot(tmp_path) -> None:
    """A value written after a running backup read the store is still captured."""
    config = make_config(tmp_path)
    primary = MemoryPrimaryStore({"users": [{"id": 1}]})
    secondary = SlowSecondaryStore(tmp_path / "slow.sqlite3", delay_seconds=0.2)
    manager = build_manager(config, primary, secondary=secondary)
    guard = GuardedStore(primary, config.protected_keys, manager)
    backup = asyncio.ensure_future(manager.run_backup_pass("interval"))
    await asyncio.sleep(0.05)

    guard.set("transactions", [{"id": "t1"}])
    await guard.delete("transactions")
    await backup

    snapshots = [manager.get_snapshot(s.snapshot_id) for s in manager.list_snapshots()]
    assert len(snapshots) == 2
    assert snapshots[0].contents["transactions"] == '[{"id": "t1"}]'
    assert "transactions" not in primary


@pytest.mark.asyncio
async def test_delete_proceeds_past_corrupt_dataset(tmp_path) -> None:
    """An unreadable dataset file does not block deleting another key."""
    config = make_config(tmp_path)
    primary = JsonDirectoryPrimaryStore(tmp_path / "primary")
    primary.set("users", [{"id": 1}])
    (tmp_path / "primary" / "transactions.json").write_text("{not json", encoding="utf-8")
    manager = build_manager(config, primary)
    guard = GuardedStore(primary, config.protected_keys, manager)

    await guard.delete("users")

    snapshot_id = manager.latest_snapshot_id()
    assert snapshot_id is not None
    snapshot = manager.get_snapshot(snapshot_id)
    assert "users" in snapshot.contents
    assert snapshot.skipped == ("transactions",)
    assert "users" not in primary
