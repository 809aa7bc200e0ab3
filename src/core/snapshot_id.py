"""Snapshot id generation.

Ids combine a UTC timestamp with a process-local sequence number so
they stay unique and totally ordered under rapid successive calls.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"
_SEQUENCE_WIDTH = 12


class SnapshotIdGenerator:
    """Monotonic snapshot id source.

    Ids have the form ``<timestamp>-<sequence>`` where the sequence
    always increases, so lexical order equals creation order even
    when the wall clock stalls or steps backwards.
    """

    def __init__(self, last_id: str | None = None) -> None:
        self._lock = threading.Lock()
        self._last_timestamp = ""
        self._sequence = 0
        if last_id:
            self._last_timestamp, self._sequence = parse_snapshot_id(last_id)

    def next_id(self, now: datetime | None = None) -> tuple[str, datetime]:
        """Return a new id and the timestamp it was derived from.

        Args:
            now: Optional creation time; defaults to current UTC time.

        Returns:
            Pair of snapshot id and creation timestamp.
        """
        created_at = now or datetime.now(timezone.utc)
        with self._lock:
            timestamp = created_at.strftime(_TIMESTAMP_FORMAT)
            # Never let the timestamp part move backwards.
            timestamp = max(timestamp, self._last_timestamp)
            self._sequence += 1
            self._last_timestamp = timestamp
            return f"{timestamp}-{self._sequence:0{_SEQUENCE_WIDTH}d}", created_at


def parse_snapshot_id(snapshot_id: str) -> tuple[str, int]:
    """Split a snapshot id into its timestamp and sequence parts.

    Args:
        snapshot_id: Id produced by ``SnapshotIdGenerator``.

    Returns:
        Pair of timestamp text and sequence number.

    Raises:
        ValueError: If the id is not in the expected format.
    """
    timestamp, _, sequence = snapshot_id.rpartition("-")
    if not timestamp or not sequence.isdigit():
        raise ValueError(f"Malformed snapshot id '{snapshot_id}'.")
    return timestamp, int(sequence)
