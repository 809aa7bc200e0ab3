"""Shared JSON serialization for Snapshot payloads.

This module centralizes Snapshot encoding logic.
It is reused by the version index, the secondary store, and archives.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping

from core.errors import SerializationError
from core.types import Snapshot, SnapshotSummary


def serialize_dataset(name: str, value: Any) -> str:
    """Serialize one dataset value into canonical JSON text.

    Args:
        name: Dataset name, used in error messages.
        value: Live dataset value.

    Returns:
        JSON text with sorted keys.

    Raises:
        SerializationError: If the value is not JSON-compatible.
    """
    try:
        return json.dumps(value, sort_keys=True, allow_nan=False)
    except (TypeError, ValueError) as error:
        raise SerializationError(
            f"Dataset '{name}' could not be serialized: {error}. "
            "Store only JSON-compatible lists and maps in protected datasets."
        ) from error


def deserialize_dataset(serialized: str) -> Any:
    """Decode dataset JSON text captured in a snapshot."""
    return json.loads(serialized)


def snapshot_to_payload(snapshot: Snapshot) -> dict[str, object]:
    """Serialize a Snapshot into a JSON-safe payload.

    Args:
        snapshot: Snapshot instance.

    Returns:
        Dictionary payload for JSON encoding.
    """
    return {
        "snapshot_id": snapshot.snapshot_id,
        "created_at": snapshot.created_at.isoformat(),
        "contents": dict(snapshot.contents),
        "size_bytes": snapshot.size_bytes,
        "skipped": list(snapshot.skipped),
    }


def snapshot_from_payload(payload: Mapping[str, Any]) -> Snapshot:
    """Deserialize a JSON payload into a Snapshot.

    Args:
        payload: Serialized snapshot payload.

    Returns:
        Parsed Snapshot.
    """
    contents = payload.get("contents", {})
    return Snapshot(
        snapshot_id=str(payload["snapshot_id"]),
        created_at=datetime.fromisoformat(str(payload["created_at"])),
        contents={str(key): str(value) for key, value in dict(contents).items()},
        size_bytes=int(payload.get("size_bytes", 0)),
        skipped=tuple(str(name) for name in payload.get("skipped", ())),
    )


def summarize(snapshot: Snapshot) -> SnapshotSummary:
    """Return the listing row for a snapshot."""
    return SnapshotSummary(
        snapshot_id=snapshot.snapshot_id,
        created_at=snapshot.created_at,
        size_bytes=snapshot.size_bytes,
    )
