"""Public SDK surface for Warden.

This module provides a stable import path for host applications.
It re-exports the engine, stores, and typed models.
"""

from __future__ import annotations

from core.config import WardenConfig
from core.errors import (
    RemoteUnavailableError,
    SerializationError,
    SnapshotNotFoundError,
    StorageWriteError,
    WardenError,
)
from core.types import ProtectionStatus, RemoteMirrorState, Snapshot, SnapshotSummary
from protect.engine import ProtectionEngine
from protect.remote_mirror import TabularStore
from protect.sheets_client import GoogleSheetsTabularStore
from store.guarded_store import GuardedStore
from store.primary_store import JsonDirectoryPrimaryStore, MemoryPrimaryStore, PrimaryStore

__all__ = [
    "GoogleSheetsTabularStore",
    "GuardedStore",
    "JsonDirectoryPrimaryStore",
    "MemoryPrimaryStore",
    "PrimaryStore",
    "ProtectionEngine",
    "ProtectionStatus",
    "RemoteMirrorState",
    "RemoteUnavailableError",
    "SerializationError",
    "Snapshot",
    "SnapshotNotFoundError",
    "SnapshotSummary",
    "StorageWriteError",
    "TabularStore",
    "WardenConfig",
    "WardenError",
]
