"""Best-effort mirroring of snapshots to a remote tabular store.

Every dataset is written as one rectangular table per sheet. Remote
failures are logged and recorded in the mirror state, never raised.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Mapping, Protocol, Sequence, TypeVar

from core.constants import MAP_SHEET_HEADERS, SHEET_COLUMN_SPAN
from core.errors import RemoteUnavailableError
from core.logging_config import get_logger
from core.types import RemoteMirrorState, Snapshot
from store.snapshot_payload import deserialize_dataset

_LOGGER = get_logger(__name__)
_T = TypeVar("_T")

Table = list[list[Any]]


class TabularStore(Protocol):
    """Remote store addressed by range strings such as ``Users!A:H``."""

    async def read(self, range_spec: str) -> Table:
        """Return the cell values in a range."""

    async def write(self, range_spec: str, values: Table) -> None:
        """Overwrite a range with cell values."""


class NullTabularStore:
    """Tabular store used when no remote mirror is configured."""

    async def read(self, range_spec: str) -> Table:
        raise RemoteUnavailableError("Remote mirror is not configured.")

    async def write(self, range_spec: str, values: Table) -> None:
        raise RemoteUnavailableError("Remote mirror is not configured.")


class RemoteMirror:
    """Copy snapshot contents to a tabular store without ever failing the caller."""

    def __init__(
        self,
        tabular: TabularStore,
        protected_keys: Sequence[str],
        timeout_seconds: float,
    ) -> None:
        """Create a mirror.

        Args:
            tabular: Remote tabular store client.
            protected_keys: Dataset names; the first one names the probe sheet.
            timeout_seconds: Cap applied to each remote call.
        """
        self._tabular = tabular
        self._probe_range = f"{sheet_name(protected_keys[0])}!A1:A1"
        self._timeout_seconds = timeout_seconds
        self._state = RemoteMirrorState()
        self._lock = asyncio.Lock()
        self._last_snapshot_id: str | None = None

    @property
    def state(self) -> RemoteMirrorState:
        """Return the latest availability state."""
        return self._state

    async def is_available(self) -> bool:
        """Probe the remote store with a lightweight read."""
        try:
            await self._call(self._tabular.read(self._probe_range))
        except Exception as error:
            self._mark_failed("remote_probe_failed", error)
            return False
        self._state = replace(self._state, available=True)
        return True

    async def sync(self, snapshot: Snapshot) -> bool:
        """Write a snapshot's datasets to the remote store.

        Syncs run one at a time. A snapshot older than the last one
        mirrored is dropped so stale data never overwrites newer data.

        Args:
            snapshot: Snapshot whose contents to mirror.

        Returns:
            Whether the remote store holds this snapshot or a newer one.
        """
        async with self._lock:
            last_id = self._last_snapshot_id
            if last_id is not None and snapshot.snapshot_id <= last_id:
                _LOGGER.info(
                    "remote_sync_superseded",
                    snapshot_id=snapshot.snapshot_id,
                    mirrored_snapshot_id=last_id,
                )
                return True
            datasets = {
                name: deserialize_dataset(serialized)
                for name, serialized in snapshot.contents.items()
            }
            synced = await self._push(datasets, snapshot.snapshot_id)
            if synced:
                self._last_snapshot_id = snapshot.snapshot_id
            return synced

    async def migrate(self, datasets: Mapping[str, Any]) -> bool:
        """Push every dataset once when mirroring is first enabled.

        Args:
            datasets: Dataset name to live value.

        Returns:
            Whether every dataset was written.
        """
        async with self._lock:
            return await self._push(dict(datasets), None)

    async def _push(self, datasets: Mapping[str, Any], snapshot_id: str | None) -> bool:
        if not await self.is_available():
            _LOGGER.warning("remote_sync_skipped", snapshot_id=snapshot_id)
            return False
        try:
            for name, value in datasets.items():
                await self._write_dataset(name, value)
        except Exception as error:
            # Remote failures never leave this boundary.
            self._mark_failed("remote_sync_failed", error, snapshot_id=snapshot_id)
            return False
        self._state = RemoteMirrorState(
            available=True, last_sync_at=datetime.now(timezone.utc), last_error=None
        )
        _LOGGER.info("remote_sync_completed", snapshot_id=snapshot_id, datasets=list(datasets))
        return True

    async def _write_dataset(self, name: str, value: Any) -> None:
        range_spec = dataset_range(name)
        table = dataset_to_table(value)
        existing = await self._call(self._tabular.read(range_spec))
        # Blank out cells left over from a larger previous copy.
        width = max((len(row) for row in table + existing), default=0)
        padded = [row + [""] * (width - len(row)) for row in table]
        padded += [[""] * width for _ in range(len(existing) - len(table))]
        await self._call(self._tabular.write(range_spec, padded))

    async def _call(self, operation: Awaitable[_T]) -> _T:
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout_seconds)
        except asyncio.TimeoutError as error:
            raise RemoteUnavailableError(
                f"Remote mirror call exceeded {self._timeout_seconds}s."
            ) from error

    def _mark_failed(self, event: str, error: Exception, **fields: object) -> None:
        self._state = replace(self._state, available=False, last_error=str(error))
        _LOGGER.warning(event, error=str(error), error_type=type(error).__name__, **fields)


def sheet_name(dataset_name: str) -> str:
    """Return the CamelCase sheet name for a dataset (``credit_cards`` -> ``CreditCards``)."""
    return "".join(part[:1].upper() + part[1:] for part in dataset_name.split("_") if part)


def dataset_range(dataset_name: str) -> str:
    """Return the range specifier addressing a dataset's sheet."""
    return f"{sheet_name(dataset_name)}!{SHEET_COLUMN_SPAN}"


def dataset_to_table(value: Any) -> Table:
    """Convert a dataset value into a header row plus data rows.

    Lists of records use the union of record keys as headers, maps
    become a two-column key/value table, anything else a single column.
    """
    if isinstance(value, Mapping):
        return [list(MAP_SHEET_HEADERS)] + [[str(key), _cell(item)] for key, item in value.items()]
    if isinstance(value, list) and all(isinstance(item, Mapping) for item in value):
        if not value:
            return []
        headers: list[str] = []
        for record in value:
            headers.extend(str(key) for key in record if str(key) not in headers)
        rows = [[_cell(record.get(header, "")) for header in headers] for record in value]
        return [headers] + rows
    if isinstance(value, list):
        return [["Value"]] + [[_cell(item)] for item in value]
    return [["Value"], [_cell(value)]]


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool)):
        return value
    return json.dumps(value, sort_keys=True)
