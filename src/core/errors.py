"""Warden exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each storage tier raises a specific error type for debuggability.
"""

from __future__ import annotations


class WardenError(Exception):
    """Base exception for all Warden failures."""


class WardenConfigError(WardenError):
    """Raised for invalid runtime configuration."""


class WardenDependencyError(WardenError):
    """Raised when an optional runtime dependency is missing."""


class StorageWriteError(WardenError):
    """Raised when the primary or secondary store rejects a write."""


class RemoteUnavailableError(WardenError):
    """Raised inside the remote mirror when the tabular store cannot be reached."""


class SnapshotNotFoundError(WardenError):
    """Raised when a snapshot id is not present in any local tier."""


class SerializationError(WardenError):
    """Raised when a dataset value cannot be serialized into a snapshot."""


class WardenArchiveError(WardenError):
    """Raised for backup archive export and import failures."""


class SchedulerStateError(WardenError):
    """Raised for invalid backup scheduler lifecycle transitions."""
