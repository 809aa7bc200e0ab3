"""Shared typed models.

This module defines immutable data models used by the store,
protection, and CLI layers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping


@dataclass(frozen=True)
class Snapshot:
    """Immutable copy of every protected dataset at one instant.

    Attributes:
        snapshot_id: Sortable unique id (timestamp plus sequence).
        created_at: UTC creation timestamp.
        contents: Dataset name to serialized JSON text.
        size_bytes: Total UTF-8 size of all serialized datasets.
        skipped: Dataset names that could not be serialized.
    """

    snapshot_id: str
    created_at: datetime
    contents: Mapping[str, str]
    size_bytes: int
    skipped: tuple[str, ...] = ()


@dataclass(frozen=True)
class SnapshotSummary:
    """Listing row for one retained snapshot."""

    snapshot_id: str
    created_at: datetime
    size_bytes: int


@dataclass(frozen=True)
class RemoteMirrorState:
    """Opportunistic availability state of the remote mirror.

    Attributes:
        available: Result of the last probe or write attempt.
        last_sync_at: UTC time of the last successful sync, if any.
        last_error: Message of the last failure, if any.
    """

    available: bool = False
    last_sync_at: datetime | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class ProtectionStatus:
    """Dashboard view of the protection engine.

    Attributes:
        running: Whether the backup scheduler is armed.
        snapshot_count: Number of retained snapshots.
        latest_snapshot_id: Newest snapshot id, if any.
        mirror: Remote mirror state.
        dataset_sizes: Protected dataset name to item count.
    """

    running: bool
    snapshot_count: int
    latest_snapshot_id: str | None
    mirror: RemoteMirrorState
    dataset_sizes: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ArchiveManifest:
    """Metadata stored at the root of an exported backup archive."""

    export_date: datetime
    format_version: str
    snapshot_id: str | None
    dataset_counts: Mapping[str, int]
