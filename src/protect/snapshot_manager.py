"""Snapshot creation, retention, and lookup.

This module owns the capture of every protected dataset into one
immutable snapshot and its fan-out to the local storage tiers.
"""

from __future__ import annotations

import asyncio
import sqlite3
from typing import Any, Protocol

from core.config import WardenConfig
from core.errors import SerializationError, SnapshotNotFoundError, StorageWriteError
from core.logging_config import get_logger
from core.snapshot_id import SnapshotIdGenerator
from core.types import Snapshot, SnapshotSummary
from store.primary_store import PrimaryStore
from store.secondary_store import SqliteSecondaryStore
from store.snapshot_payload import serialize_dataset
from store.version_index import VersionIndex

_LOGGER = get_logger(__name__)
_MISSING = object()


class SnapshotMirror(Protocol):
    """Narrow interface the manager uses to hand snapshots to a remote copy."""

    async def sync(self, snapshot: Snapshot) -> bool:
        """Copy a snapshot remotely; must not raise."""


class SnapshotManager:
    """Create, retain, and look up snapshots of protected datasets.

    Concurrent ``create_snapshot`` calls coalesce: a caller arriving while
    a snapshot is queued and has not yet read the primary store awaits
    that snapshot and receives its id. Once the in-flight snapshot has
    read the store, or when it differs in mirroring, a new snapshot is
    queued behind it. Sequential calls always create distinct snapshots.
    """

    def __init__(
        self,
        config: WardenConfig,
        primary: PrimaryStore,
        index: VersionIndex,
        secondary: SqliteSecondaryStore,
        mirror: SnapshotMirror | None = None,
        lock: asyncio.Lock | None = None,
    ) -> None:
        """Wire the manager to its storage tiers.

        Args:
            config: Runtime configuration.
            primary: Live dataset store to read from.
            index: Local version index.
            secondary: Redundant SQLite store.
            mirror: Optional best-effort remote copy.
            lock: Store-wide mutual-exclusion point shared with restores.
        """
        self._config = config
        self._primary = primary
        self._index = index
        self._secondary = secondary
        self._mirror = mirror
        self.lock = lock or asyncio.Lock()
        existing_ids = index.ids()
        self._ids = SnapshotIdGenerator(existing_ids[0] if existing_ids else None)
        self._in_flight: asyncio.Task[str] | None = None
        self._in_flight_mirror = True
        self._captured: set[asyncio.Future[str]] = set()
        self._mirror_tasks: set[asyncio.Task[bool]] = set()

    async def create_snapshot(self, reason: str = "manual", mirror: bool = True) -> str:
        """Capture every protected dataset into a new snapshot.

        Args:
            reason: Trigger name recorded in logs.
            mirror: Whether to hand the snapshot to the remote mirror.

        Returns:
            Id of the created (or coalesced in-flight) snapshot.

        Raises:
            StorageWriteError: If the version index or the secondary store
                rejects the snapshot. A secondary failure still leaves the
                indexed copy in place.
        """
        in_flight = self._in_flight
        if (
            in_flight is not None
            and not in_flight.done()
            and in_flight not in self._captured
            and self._in_flight_mirror == mirror
        ):
            _LOGGER.info("snapshot_coalesced", reason=reason)
            return await asyncio.shield(in_flight)
        task = asyncio.ensure_future(self._create(reason, mirror))
        self._in_flight = task
        self._in_flight_mirror = mirror
        task.add_done_callback(self._captured.discard)
        return await asyncio.shield(task)

    async def run_backup_pass(self, reason: str) -> str | None:
        """Create a snapshot on a background path, logging instead of raising.

        Args:
            reason: Trigger name recorded in logs.

        Returns:
            Snapshot id, or None when the pass failed.
        """
        try:
            return await self.create_snapshot(reason)
        except Exception as error:
            # Background backups must never take the host process down.
            _LOGGER.error(
                "periodic_backup_failed",
                reason=reason,
                error=str(error),
                error_type=type(error).__name__,
            )
            return None

    def list_snapshots(self) -> list[SnapshotSummary]:
        """Return retained snapshots, newest first."""
        return self._index.summaries()

    def latest_snapshot_id(self) -> str | None:
        """Return the newest retained snapshot id, if any."""
        ids = self._index.ids()
        return ids[0] if ids else None

    def get_snapshot(self, snapshot_id: str) -> Snapshot:
        """Load a snapshot from the index, falling back to the secondary store.

        Raises:
            SnapshotNotFoundError: If neither local tier holds the id.
        """
        try:
            return self._index.get(snapshot_id)
        except SnapshotNotFoundError as index_error:
            try:
                snapshot = self._secondary.get(snapshot_id)
            except SnapshotNotFoundError:
                raise SnapshotNotFoundError(
                    f"Snapshot '{snapshot_id}' not found. "
                    "Use list_snapshots to discover valid snapshot ids."
                ) from index_error
            _LOGGER.warning("snapshot_loaded_from_secondary", snapshot_id=snapshot_id)
            return snapshot

    async def purge(self, snapshot_id: str) -> None:
        """Explicitly delete a snapshot from every local tier.

        Raises:
            SnapshotNotFoundError: If no local tier holds the id.
        """
        async with self.lock:
            in_index = await asyncio.to_thread(self._index.remove, snapshot_id)
            in_secondary = snapshot_id in await asyncio.to_thread(self._secondary.ids)
            if in_secondary:
                await asyncio.to_thread(self._secondary.delete, snapshot_id)
        if not in_index and not in_secondary:
            raise SnapshotNotFoundError(f"Snapshot '{snapshot_id}' not found; nothing to purge.")
        _LOGGER.info("snapshot_purged", snapshot_id=snapshot_id)

    async def drain_mirror(self) -> None:
        """Wait for detached remote mirror syncs to finish."""
        if self._mirror_tasks:
            await asyncio.gather(*self._mirror_tasks, return_exceptions=True)

    async def _create(self, reason: str, mirror: bool) -> str:
        secondary_error: StorageWriteError | None = None
        async with self.lock:
            snapshot = self._capture()
            current = asyncio.current_task()
            if current is not None:
                self._captured.add(current)
            await asyncio.to_thread(self._index.add, snapshot)
            try:
                await asyncio.to_thread(self._secondary.put, snapshot)
            except StorageWriteError as error:
                secondary_error = error
                _LOGGER.error(
                    "secondary_write_failed", snapshot_id=snapshot.snapshot_id, error=str(error)
                )
            await asyncio.to_thread(self.evict_oldest)
        _LOGGER.info(
            "snapshot_created",
            snapshot_id=snapshot.snapshot_id,
            size_bytes=snapshot.size_bytes,
            dataset_count=len(snapshot.contents),
            skipped=list(snapshot.skipped),
            reason=reason,
        )
        if mirror:
            self._start_mirror_sync(snapshot)
        if secondary_error is not None:
            raise secondary_error
        return snapshot.snapshot_id

    def _capture(self) -> Snapshot:
        """Read and serialize every protected dataset present in the primary store."""
        contents: dict[str, str] = {}
        skipped: list[str] = []
        for name in self._config.protected_keys:
            try:
                value: Any = self._primary.get(name, _MISSING)
                if value is _MISSING:
                    continue
                contents[name] = serialize_dataset(name, value)
            except SerializationError as error:
                skipped.append(name)
                _LOGGER.warning("snapshot_dataset_skipped", dataset=name, error=str(error))
        snapshot_id, created_at = self._ids.next_id()
        return Snapshot(
            snapshot_id=snapshot_id,
            created_at=created_at,
            contents=contents,
            size_bytes=sum(len(text.encode("utf-8")) for text in contents.values()),
            skipped=tuple(skipped),
        )

    def evict_oldest(self) -> list[str]:
        """Drop snapshots beyond the retention cap from both local tiers.

        Returns:
            Evicted snapshot ids.
        """
        evicted = self._index.evict_beyond(self._config.max_versions)
        try:
            overflow = self._secondary.ids()[self._config.max_versions :]
        except sqlite3.Error as error:
            overflow = []
            _LOGGER.warning("secondary_list_failed", error=str(error))
        for snapshot_id in dict.fromkeys(evicted + overflow):
            try:
                self._secondary.delete(snapshot_id)
            except sqlite3.Error as error:
                _LOGGER.warning(
                    "secondary_evict_failed", snapshot_id=snapshot_id, error=str(error)
                )
        if evicted:
            _LOGGER.info("snapshots_evicted", snapshot_ids=evicted)
        return evicted

    def _start_mirror_sync(self, snapshot: Snapshot) -> None:
        if self._mirror is None:
            return
        task = asyncio.ensure_future(self._mirror.sync(snapshot))
        self._mirror_tasks.add(task)
        task.add_done_callback(self._mirror_tasks.discard)
