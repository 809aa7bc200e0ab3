"""Local version index of retained snapshots.

Each snapshot is written to its own payload file and the catalog file
keeps the newest-first id order used for listing and retention.
"""

from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any

from core.constants import CATALOG_FILE_NAME, VERSIONS_DIR_NAME
from core.errors import SnapshotNotFoundError, StorageWriteError
from core.logging_config import get_logger
from core.types import Snapshot, SnapshotSummary
from store.snapshot_payload import snapshot_from_payload, snapshot_to_payload

_LOGGER = get_logger(__name__)


class VersionIndex:
    """Newest-first index of snapshots kept under the data root."""

    def __init__(self, data_root: Path) -> None:
        """Initialize the index directories.

        Args:
            data_root: Local root directory for engine state.
        """
        self._versions_dir = data_root / VERSIONS_DIR_NAME
        self._versions_dir.mkdir(parents=True, exist_ok=True)
        self._catalog_path = data_root / CATALOG_FILE_NAME
        self._entries: list[dict[str, Any]] = self._load_catalog()

    def add(self, snapshot: Snapshot) -> None:
        """Persist a snapshot payload and prepend it to the catalog.

        Args:
            snapshot: Snapshot to index.

        Raises:
            StorageWriteError: If payload or catalog cannot be written.
        """
        payload_path = self._payload_path(snapshot.snapshot_id)
        _write_json_atomic(payload_path, snapshot_to_payload(snapshot))
        entry = {
            "snapshot_id": snapshot.snapshot_id,
            "created_at": snapshot.created_at.isoformat(),
            "size_bytes": snapshot.size_bytes,
        }
        self._entries.insert(0, entry)
        try:
            self._save_catalog()
        except StorageWriteError:
            self._entries.pop(0)
            payload_path.unlink(missing_ok=True)
            raise

    def get(self, snapshot_id: str) -> Snapshot:
        """Load one snapshot payload.

        Raises:
            SnapshotNotFoundError: If the id is unknown or its payload is unreadable.
        """
        if snapshot_id not in self.ids():
            raise SnapshotNotFoundError(f"Snapshot '{snapshot_id}' is not in the version index.")
        payload_path = self._payload_path(snapshot_id)
        try:
            payload = json.loads(payload_path.read_text(encoding="utf-8"))
            return snapshot_from_payload(payload)
        except (OSError, ValueError, KeyError) as error:
            raise SnapshotNotFoundError(
                f"Snapshot '{snapshot_id}' payload at {payload_path} is unreadable: {error}."
            ) from error

    def ids(self) -> list[str]:
        """Return indexed snapshot ids, newest first."""
        return [str(entry["snapshot_id"]) for entry in self._entries]

    def summaries(self) -> list[SnapshotSummary]:
        """Return listing rows, newest first."""
        return [_summary_from_entry(entry) for entry in self._entries]

    def remove(self, snapshot_id: str) -> bool:
        """Drop a snapshot from the catalog and delete its payload file.

        Returns:
            Whether the id was present.
        """
        remaining = [entry for entry in self._entries if entry["snapshot_id"] != snapshot_id]
        if len(remaining) == len(self._entries):
            return False
        self._entries = remaining
        self._save_catalog()
        self._payload_path(snapshot_id).unlink(missing_ok=True)
        return True

    def evict_beyond(self, max_versions: int) -> list[str]:
        """Remove the oldest snapshots until at most ``max_versions`` remain.

        Returns:
            Evicted snapshot ids, oldest last.
        """
        evicted = self.ids()[max_versions:]
        for snapshot_id in evicted:
            self.remove(snapshot_id)
        return evicted

    def _payload_path(self, snapshot_id: str) -> Path:
        return self._versions_dir / f"{snapshot_id}.json"

    def _save_catalog(self) -> None:
        _write_json_atomic(self._catalog_path, {"versions": self._entries})

    def _load_catalog(self) -> list[dict[str, Any]]:
        """Read the catalog, rebuilding it from payload files when corrupt."""
        if not self._catalog_path.exists():
            return self._rebuild_entries()
        try:
            payload = json.loads(self._catalog_path.read_text(encoding="utf-8"))
            entries = payload["versions"]
            if not isinstance(entries, list):
                raise ValueError("'versions' is not a list")
            return [dict(entry) for entry in entries]
        except (OSError, ValueError, KeyError, TypeError) as error:
            _LOGGER.warning(
                "version_catalog_rebuilt",
                catalog_path=str(self._catalog_path),
                error=str(error),
            )
            return self._rebuild_entries()

    def _rebuild_entries(self) -> list[dict[str, Any]]:
        entries: list[dict[str, Any]] = []
        for payload_path in self._versions_dir.glob("*.json"):
            try:
                snapshot = snapshot_from_payload(
                    json.loads(payload_path.read_text(encoding="utf-8"))
                )
            except (OSError, ValueError, KeyError) as error:
                _LOGGER.warning(
                    "version_payload_unreadable", path=str(payload_path), error=str(error)
                )
                continue
            entries.append(
                {
                    "snapshot_id": snapshot.snapshot_id,
                    "created_at": snapshot.created_at.isoformat(),
                    "size_bytes": snapshot.size_bytes,
                }
            )
        return sorted(entries, key=lambda entry: str(entry["snapshot_id"]), reverse=True)


def _summary_from_entry(entry: dict[str, Any]) -> SnapshotSummary:
    return SnapshotSummary(
        snapshot_id=str(entry["snapshot_id"]),
        created_at=datetime.fromisoformat(str(entry["created_at"])),
        size_bytes=int(entry["size_bytes"]),
    )


def _write_json_atomic(path: Path, payload: object) -> None:
    """Write JSON through a temp file and rename.

    Raises:
        StorageWriteError: If the file cannot be written.
    """
    temp_path = path.with_name(path.name + ".tmp")
    try:
        temp_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        os.replace(temp_path, path)
    except OSError as error:
        temp_path.unlink(missing_ok=True)
        raise StorageWriteError(
            f"Failed to write {path}: {error}. Check disk space and permissions."
        ) from error
