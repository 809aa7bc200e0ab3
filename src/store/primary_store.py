"""Primary key/value store holding the live value of each dataset.

The engine treats every dataset as an opaque JSON-compatible blob.
Stores publish a change notification for every mutated key.
"""

from __future__ import annotations

import copy
import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from core.errors import SerializationError, StorageWriteError


ChangeListener = Callable[[str], None]


class PrimaryStore(ABC):
    """Synchronous canonical store for named datasets."""

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the current value of a dataset, or ``default``."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Return all dataset names currently stored."""

    @abstractmethod
    def _write(self, key: str, value: Any) -> None:
        """Persist one dataset value."""

    @abstractmethod
    def _remove(self, key: str) -> None:
        """Remove one dataset if present."""

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key in self.keys()

    def set(self, key: str, value: Any) -> None:
        """Write a dataset value and notify listeners.

        Raises:
            StorageWriteError: If the value cannot be persisted.
        """
        self._write(key, value)
        self._notify(key)

    def set_many(self, values: Mapping[str, Any]) -> None:
        """Write several datasets all-or-nothing.

        On failure every key already written is put back to its
        previous value (or removed if it did not exist or was unreadable).

        Raises:
            StorageWriteError: If any value cannot be persisted.
        """
        missing = object()
        previous: dict[str, Any] = {}
        for key in values:
            try:
                previous[key] = self.get(key, missing)
            except SerializationError:
                # An unreadable value is replaced, never rolled back to.
                previous[key] = missing
        written: list[str] = []
        try:
            for key, value in values.items():
                self._write(key, value)
                written.append(key)
        except StorageWriteError:
            for key in written:
                old_value = previous[key]
                if old_value is missing:
                    self._remove(key)
                else:
                    self._write(key, old_value)
            raise
        for key in written:
            self._notify(key)

    def delete(self, key: str) -> None:
        """Remove a dataset and notify listeners."""
        self._remove(key)
        self._notify(key)

    def clear(self) -> None:
        """Remove every dataset and notify listeners."""
        for key in self.keys():
            self.delete(key)

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener.

        Args:
            listener: Callable invoked with each mutated key.

        Returns:
            Function that unregisters the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners):
            listener(key)


class MemoryPrimaryStore(PrimaryStore):
    """In-process store; values are deep-copied on the way in and out."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self._values: dict[str, Any] = copy.deepcopy(dict(initial or {}))

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._values:
            return default
        return copy.deepcopy(self._values[key])

    def keys(self) -> list[str]:
        return list(self._values)

    def _write(self, key: str, value: Any) -> None:
        self._values[key] = copy.deepcopy(value)

    def _remove(self, key: str) -> None:
        self._values.pop(key, None)


class JsonDirectoryPrimaryStore(PrimaryStore):
    """Directory-backed store with one JSON file per dataset."""

    def __init__(self, root: Path) -> None:
        super().__init__()
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def get(self, key: str, default: Any = None) -> Any:
        """Return a dataset value, or ``default`` when no file exists.

        Raises:
            SerializationError: If the dataset file cannot be read or decoded.
        """
        path = self._path(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as error:
            raise SerializationError(
                f"Dataset '{key}' at {path} could not be read: {error}. "
                "Restore the file from a snapshot or remove it."
            ) from error

    def keys(self) -> list[str]:
        return sorted(path.stem for path in self._root.glob("*.json"))

    def _write(self, key: str, value: Any) -> None:
        path = self._path(key)
        temp_path = path.with_suffix(".json.tmp")
        try:
            payload = json.dumps(value, indent=2, sort_keys=True)
            temp_path.write_text(payload + "\n", encoding="utf-8")
            os.replace(temp_path, path)
        except (OSError, TypeError, ValueError) as error:
            temp_path.unlink(missing_ok=True)
            raise StorageWriteError(
                f"Failed to write dataset '{key}' to {path}: {error}. "
                "Check disk space and that the value is JSON-compatible."
            ) from error

    def _remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def _path(self, key: str) -> Path:
        return self._root / f"{key}.json"


def count_items(value: Any) -> int:
    """Return the number of records in a dataset value."""
    if isinstance(value, (list, tuple, dict)):
        return len(value)
    return 0 if value is None else 1


def read_datasets(store: PrimaryStore, keys: Iterable[str]) -> dict[str, Any]:
    """Read the given keys that currently exist in the store."""
    missing = object()
    values = {key: store.get(key, missing) for key in keys}
    return {key: value for key, value in values.items() if value is not missing}
