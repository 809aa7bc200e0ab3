"""Restore protected datasets from a snapshot or an imported archive.

This is the only component that bulk-overwrites the primary store. It
runs under the same lock as snapshot creation so the two never overlap.
"""

from __future__ import annotations

from typing import Any, Collection, Mapping

from core.logging_config import get_logger
from protect.snapshot_manager import SnapshotManager
from store.primary_store import PrimaryStore
from store.snapshot_payload import deserialize_dataset

_LOGGER = get_logger(__name__)


class RestoreService:
    """Atomically replace protected datasets with stored values."""

    def __init__(
        self,
        primary: PrimaryStore,
        snapshots: SnapshotManager,
        protected_keys: Collection[str],
    ) -> None:
        self._primary = primary
        self._snapshots = snapshots
        self._protected_keys = frozenset(protected_keys)

    async def restore(self, snapshot_id: str) -> list[str]:
        """Overwrite protected datasets with a snapshot's values.

        This is irreversible for data written after the snapshot was
        taken; callers may take a snapshot first.

        Args:
            snapshot_id: Id of the snapshot to restore.

        Returns:
            Names of the datasets that were replaced.

        Raises:
            SnapshotNotFoundError: If the id is unknown.
            StorageWriteError: If the primary store rejects the write; no
                dataset is changed in that case.
        """
        async with self._snapshots.lock:
            snapshot = self._snapshots.get_snapshot(snapshot_id)
            values = {
                name: deserialize_dataset(serialized)
                for name, serialized in snapshot.contents.items()
                if name in self._protected_keys
            }
            self._primary.set_many(values)
        _LOGGER.info("restore_completed", snapshot_id=snapshot_id, datasets=sorted(values))
        return sorted(values)

    async def apply(self, datasets: Mapping[str, Any], source: str) -> list[str]:
        """Overwrite protected datasets with externally supplied values.

        Args:
            datasets: Dataset name to decoded value; unprotected names are ignored.
            source: Origin recorded in logs, such as an archive path.

        Returns:
            Names of the datasets that were replaced.
        """
        values = {name: value for name, value in datasets.items() if name in self._protected_keys}
        ignored = sorted(set(datasets) - set(values))
        async with self._snapshots.lock:
            self._primary.set_many(values)
        _LOGGER.info("datasets_applied", source=source, datasets=sorted(values), ignored=ignored)
        return sorted(values)
