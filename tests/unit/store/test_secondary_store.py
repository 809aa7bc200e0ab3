"""Unit tests for the SQLite secondary store."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from core.errors import SnapshotNotFoundError, StorageWriteError
from core.types import Snapshot
from store.secondary_store import SqliteSecondaryStore
from tests.fakes import FlakySecondaryStore


def _snapshot(snapshot_id: str) -> Snapshot:
    return Snapshot(
        snapshot_id=snapshot_id,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        contents={"users": "[]"},
        size_bytes=2,
        skipped=("transactions",),
    )


def test_put_and_get_snapshot(tmp_path) -> None:
    """Stored snapshots should load back with identical fields."""
    store = SqliteSecondaryStore(tmp_path / "secondary.sqlite3")

    store.put(_snapshot("a-000001"))

    assert store.get("a-000001") == _snapshot("a-000001")


def test_delete_removes_snapshot(tmp_path) -> None:
    """Deleted ids should no longer resolve."""
    store = SqliteSecondaryStore(tmp_path / "secondary.sqlite3")
    store.put(_snapshot("a-000001"))
    store.put(_snapshot("a-000002"))

    store.delete("a-000001")

    assert store.ids() == ["a-000002"]
    with pytest.raises(SnapshotNotFoundError):
        store.get("a-000001")


def test_put_retries_transient_failures(tmp_path) -> None:
    """A write should succeed when a retry gets through."""
    store = FlakySecondaryStore(tmp_path / "secondary.sqlite3", failures=1, write_retries=2)

    store.put(_snapshot("a-000001"))

    assert store.attempts == 2
    assert store.ids() == ["a-000001"]


def test_put_raises_after_exhausting_retries(tmp_path) -> None:
    """Persistent failures should surface as storage write errors."""
    store = FlakySecondaryStore(tmp_path / "secondary.sqlite3", failures=5, write_retries=3)

    with pytest.raises(StorageWriteError):
        store.put(_snapshot("a-000001"))

    assert store.attempts == 3
