"""Secondary durable snapshot store backed by an embedded SQLite database.

This tier is independent of the version index files so that a corrupt
or missing local payload can still be restored.
"""

from __future__ import annotations

import json
import sqlite3
import time
from contextlib import closing
from pathlib import Path

from core.constants import WRITE_RETRY_BACKOFF_SECONDS
from core.errors import SnapshotNotFoundError, StorageWriteError
from core.logging_config import get_logger
from core.types import Snapshot
from store.snapshot_payload import snapshot_from_payload, snapshot_to_payload

_LOGGER = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS snapshots (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    size_bytes INTEGER NOT NULL,
    contents TEXT NOT NULL
)
"""


class SqliteSecondaryStore:
    """SQLite-backed redundant copy of every snapshot.

    A new connection is opened per operation so the store can be used
    from worker threads without sharing connection state.
    """

    def __init__(self, db_path: Path, write_retries: int = 1) -> None:
        """Create the database file and schema if needed.

        Args:
            db_path: SQLite database file path.
            write_retries: Attempts made by ``put`` before failing.
        """
        self._db_path = db_path
        self._write_retries = write_retries
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as connection, connection:
            connection.execute(_SCHEMA)

    def put(self, snapshot: Snapshot) -> None:
        """Store a snapshot, retrying transient failures.

        Args:
            snapshot: Snapshot to persist.

        Raises:
            StorageWriteError: If every attempt fails.
        """
        payload = json.dumps(snapshot_to_payload(snapshot), sort_keys=True)
        last_error: sqlite3.Error | None = None
        for attempt in range(1, self._write_retries + 1):
            try:
                with closing(self._connect()) as connection, connection:
                    connection.execute(
                        "INSERT OR REPLACE INTO snapshots (id, created_at, size_bytes, contents) "
                        "VALUES (?, ?, ?, ?)",
                        (
                            snapshot.snapshot_id,
                            snapshot.created_at.isoformat(),
                            snapshot.size_bytes,
                            payload,
                        ),
                    )
                return
            except sqlite3.Error as error:
                last_error = error
                _LOGGER.warning(
                    "secondary_write_retry",
                    snapshot_id=snapshot.snapshot_id,
                    attempt=attempt,
                    error=str(error),
                )
                if attempt < self._write_retries:
                    time.sleep(WRITE_RETRY_BACKOFF_SECONDS * attempt)
        raise StorageWriteError(
            f"Failed to write snapshot {snapshot.snapshot_id} to {self._db_path} "
            f"after {self._write_retries} attempts: {last_error}. "
            "Check disk space and database file permissions."
        )

    def get(self, snapshot_id: str) -> Snapshot:
        """Load one snapshot.

        Raises:
            SnapshotNotFoundError: If the id is not stored.
        """
        with closing(self._connect()) as connection:
            row = connection.execute(
                "SELECT contents FROM snapshots WHERE id = ?", (snapshot_id,)
            ).fetchone()
        if row is None:
            raise SnapshotNotFoundError(f"Snapshot '{snapshot_id}' is not in the secondary store.")
        return snapshot_from_payload(json.loads(row[0]))

    def delete(self, snapshot_id: str) -> None:
        """Remove a snapshot if present."""
        with closing(self._connect()) as connection, connection:
            connection.execute("DELETE FROM snapshots WHERE id = ?", (snapshot_id,))

    def ids(self) -> list[str]:
        """Return stored snapshot ids, newest first."""
        with closing(self._connect()) as connection:
            rows = connection.execute("SELECT id FROM snapshots ORDER BY id DESC").fetchall()
        return [str(row[0]) for row in rows]

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path, timeout=5.0)
