"""Protection engine facade.

This module wires the storage tiers, snapshot manager, remote mirror,
deletion guard, restore service, and scheduler into one service object.
The host application constructs and starts it explicitly.
"""

from __future__ import annotations

import asyncio
from typing import Any

from core.config import WardenConfig
from core.constants import SECONDARY_DB_FILE_NAME
from core.logging_config import get_logger
from core.types import ArchiveManifest, ProtectionStatus, SnapshotSummary
from protect.remote_mirror import NullTabularStore, RemoteMirror, TabularStore
from protect.restore_service import RestoreService
from protect.scheduler import BackupScheduler
from protect.sheets_client import GoogleSheetsTabularStore
from protect.snapshot_manager import SnapshotManager
from store.archive import export_archive, import_archive
from store.guarded_store import GuardedStore
from store.primary_store import PrimaryStore, count_items, read_datasets
from store.secondary_store import SqliteSecondaryStore
from store.snapshot_payload import deserialize_dataset
from store.version_index import VersionIndex

_LOGGER = get_logger(__name__)


class ProtectionEngine:
    """Versioned-backup engine for a fixed set of protected datasets.

    Collaborators read and write datasets through ``store``; admin code
    uses ``create_snapshot``, ``list_snapshots``, ``restore``, ``start``
    and ``stop``.
    """

    def __init__(
        self,
        config: WardenConfig,
        primary: PrimaryStore,
        tabular: TabularStore | None = None,
    ) -> None:
        """Build every component from config.

        Args:
            config: Runtime configuration.
            primary: Live dataset store owned by the host.
            tabular: Optional remote tabular store; built from config when omitted.
        """
        self._config = config
        self._primary = primary
        config.data_root.mkdir(parents=True, exist_ok=True)
        self._tabular = tabular if tabular is not None else _tabular_from_config(config)
        self.mirror = RemoteMirror(
            self._tabular, config.protected_keys, config.remote_timeout_seconds
        )
        self.snapshots = SnapshotManager(
            config,
            primary,
            VersionIndex(config.data_root),
            SqliteSecondaryStore(
                config.data_root / SECONDARY_DB_FILE_NAME, write_retries=config.write_retries
            ),
            mirror=self.mirror,
        )
        self.store = GuardedStore(primary, config.protected_keys, self.snapshots)
        self._restorer = RestoreService(primary, self.snapshots, config.protected_keys)
        self.scheduler = BackupScheduler(
            self.snapshots,
            primary,
            config.protected_keys,
            interval_seconds=config.backup_interval_seconds,
            debounce_seconds=config.debounce_seconds,
        )

    @classmethod
    def new(
        cls,
        config: WardenConfig,
        primary: PrimaryStore,
        tabular: TabularStore | None = None,
    ) -> "ProtectionEngine":
        """Construct an engine; nothing runs until ``start`` is called."""
        return cls(config, primary, tabular)

    async def create_snapshot(self) -> str:
        """Take a snapshot now, reporting storage failures to the caller.

        Raises:
            StorageWriteError: If a local tier rejects the snapshot.
        """
        return await self.snapshots.create_snapshot(reason="manual")

    def list_snapshots(self) -> list[SnapshotSummary]:
        """Return retained snapshots, newest first."""
        return self.snapshots.list_snapshots()

    async def restore(self, snapshot_id: str) -> list[str]:
        """Replace protected datasets with a snapshot's values.

        Raises:
            SnapshotNotFoundError: If the id is unknown.
        """
        return await self._restorer.restore(snapshot_id)

    def start(self, handle_signals: bool = True) -> None:
        """Start scheduled backups; must run inside the host event loop.

        Args:
            handle_signals: Whether SIGINT and SIGTERM take a final backup.
        """
        self.scheduler.start(handle_signals=handle_signals)

    def stop(self) -> None:
        """Stop scheduled backups; in-flight work is allowed to finish."""
        self.scheduler.stop()

    async def aclose(self) -> None:
        """Stop, then wait for in-flight backups and mirror syncs."""
        self.stop()
        await self.scheduler.wait_idle()
        await self.snapshots.drain_mirror()
        close = getattr(self._tabular, "aclose", None)
        if close is not None:
            await close()

    def status(self) -> ProtectionStatus:
        """Return the dashboard view of protection state."""
        summaries = self.list_snapshots()
        datasets = read_datasets(self._primary, self._config.protected_keys)
        return ProtectionStatus(
            running=self.scheduler.running,
            snapshot_count=len(summaries),
            latest_snapshot_id=summaries[0].snapshot_id if summaries else None,
            mirror=self.mirror.state,
            dataset_sizes={name: count_items(value) for name, value in datasets.items()},
        )

    async def purge_snapshot(self, snapshot_id: str) -> None:
        """Delete one snapshot from every local tier (admin only)."""
        await self.snapshots.purge(snapshot_id)

    async def create_redundant_backup(self) -> tuple[str, bool]:
        """Snapshot to every local tier and wait for the remote copy.

        Returns:
            Pair of snapshot id and whether the remote mirror accepted it.
        """
        snapshot_id = await self.snapshots.create_snapshot(reason="redundant", mirror=False)
        mirrored = await self.mirror.sync(self.snapshots.get_snapshot(snapshot_id))
        if not mirrored:
            _LOGGER.warning("redundant_backup_local_only", snapshot_id=snapshot_id)
        return snapshot_id, mirrored

    async def migrate_remote(self) -> bool:
        """Push every live protected dataset to the remote mirror once."""
        return await self.mirror.migrate(
            read_datasets(self._primary, self._config.protected_keys)
        )

    async def export_archive(self, output: str, snapshot_id: str | None = None) -> ArchiveManifest:
        """Write a backup archive of a snapshot, or of live data when no id is given.

        Raises:
            SnapshotNotFoundError: If ``snapshot_id`` is unknown.
            WardenArchiveError: If the archive cannot be written.
        """
        if snapshot_id is None:
            datasets: dict[str, Any] = read_datasets(self._primary, self._config.protected_keys)
        else:
            snapshot = self.snapshots.get_snapshot(snapshot_id)
            datasets = {
                name: deserialize_dataset(serialized)
                for name, serialized in snapshot.contents.items()
            }
        return await asyncio.to_thread(
            export_archive, datasets, output, self._config, snapshot_id
        )

    async def import_archive(self, archive_path: str) -> ArchiveManifest:
        """Overwrite protected datasets with the contents of a backup archive.

        Raises:
            WardenArchiveError: If the archive is invalid.
        """
        manifest, datasets = await asyncio.to_thread(import_archive, archive_path)
        await self._restorer.apply(datasets, source=archive_path)
        return manifest


def _tabular_from_config(config: WardenConfig) -> TabularStore:
    if config.sheets_spreadsheet_id and config.sheets_token:
        return GoogleSheetsTabularStore(
            config.sheets_spreadsheet_id,
            config.sheets_token,
            timeout_seconds=config.remote_timeout_seconds,
        )
    return NullTabularStore()
