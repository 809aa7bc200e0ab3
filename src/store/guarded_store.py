"""Deletion guard over the primary store.

Collaborators read and write datasets through ``GuardedStore``. Removing
a protected dataset or clearing the store first attempts a snapshot.

The guarantee is best-effort, not transactional: a hard crash between
the snapshot attempt and the deletion is not covered.
"""

from __future__ import annotations

from typing import Any, Callable, Collection, Mapping, Protocol

from core.errors import StorageWriteError
from core.logging_config import get_logger
from store.primary_store import ChangeListener, PrimaryStore

_LOGGER = get_logger(__name__)


class Snapshotter(Protocol):
    """Snapshot source used by the guard."""

    async def create_snapshot(self, reason: str = "manual", mirror: bool = True) -> str:
        """Create a snapshot and return its id."""

    def latest_snapshot_id(self) -> str | None:
        """Return the newest retained snapshot id."""


class GuardedStore:
    """Primary store facade that snapshots before destructive operations."""

    def __init__(
        self,
        primary: PrimaryStore,
        protected_keys: Collection[str],
        snapshotter: Snapshotter,
    ) -> None:
        self._primary = primary
        self._protected_keys = frozenset(protected_keys)
        self._snapshotter = snapshotter

    def is_protected(self, key: str) -> bool:
        """Return whether a dataset name is in the protected key set."""
        return key in self._protected_keys

    def get(self, key: str, default: Any = None) -> Any:
        return self._primary.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._primary.set(key, value)

    def set_many(self, values: Mapping[str, Any]) -> None:
        self._primary.set_many(values)

    def keys(self) -> list[str]:
        return self._primary.keys()

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        return self._primary.subscribe(listener)

    async def delete(self, key: str) -> None:
        """Delete a dataset, snapshotting first when it is protected.

        A failed snapshot is logged and does not block the deletion.
        """
        if self.is_protected(key):
            try:
                snapshot_id = await self._snapshotter.create_snapshot(reason=f"delete:{key}")
                _LOGGER.info("deletion_guarded", key=key, snapshot_id=snapshot_id)
            except StorageWriteError as error:
                _LOGGER.error("deletion_snapshot_failed", key=key, error=str(error))
        self._primary.delete(key)

    async def clear_all(self) -> None:
        """Clear every dataset after forcing a snapshot.

        Raises:
            StorageWriteError: If no snapshot could be recorded; the store
                is left untouched.
        """
        before = self._snapshotter.latest_snapshot_id()
        try:
            snapshot_id = await self._snapshotter.create_snapshot(reason="clear_all")
        except StorageWriteError as error:
            latest = self._snapshotter.latest_snapshot_id()
            if latest is None or latest == before:
                _LOGGER.error("clear_all_blocked", error=str(error))
                raise
            # The indexed copy exists even though a later tier failed.
            snapshot_id = latest
            _LOGGER.warning("clear_all_partial_snapshot", snapshot_id=snapshot_id, error=str(error))
        _LOGGER.info("deletion_guarded", key="*", snapshot_id=snapshot_id)
        self._primary.clear()
