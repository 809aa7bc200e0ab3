"""Backup scheduling on an interval and on lifecycle events.

The scheduler is an explicit service: the host constructs it, calls
``start`` inside its event loop, and calls ``stop`` on shutdown. Only
one scheduler may run per process.
"""

from __future__ import annotations

import asyncio
import signal
from enum import Enum
from typing import Callable, ClassVar, Collection

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from core.errors import SchedulerStateError
from core.logging_config import get_logger
from protect.snapshot_manager import SnapshotManager
from store.primary_store import PrimaryStore

_LOGGER = get_logger(__name__)
_INTERVAL_JOB_ID = "warden_interval_backup"
_TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SchedulerState(str, Enum):
    """Lifecycle states of the backup scheduler."""

    STOPPED = "stopped"
    RUNNING = "running"


class BackupScheduler:
    """Drive snapshot creation from a timer and event triggers.

    Event triggers (store mutation of a protected key, going inactive)
    are debounced: triggers arriving within ``debounce_seconds`` of a
    pending one collapse into a single snapshot. Going inactive flushes
    any pending trigger immediately.
    """

    _active: ClassVar["BackupScheduler | None"] = None

    def __init__(
        self,
        snapshots: SnapshotManager,
        primary: PrimaryStore,
        protected_keys: Collection[str],
        interval_seconds: float,
        debounce_seconds: float,
    ) -> None:
        self._snapshots = snapshots
        self._primary = primary
        self._protected_keys = frozenset(protected_keys)
        self._interval_seconds = interval_seconds
        self._debounce_seconds = debounce_seconds
        self._state = SchedulerState.STOPPED
        self._timer: AsyncIOScheduler | None = None
        self._pending: asyncio.TimerHandle | None = None
        self._pending_reason: str | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._backup_tasks: set[asyncio.Task[str | None]] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._signals: list[signal.Signals] = []

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    def start(self, handle_signals: bool = True) -> None:
        """Arm the interval timer and event triggers.

        Must be called from inside a running event loop. Starting an
        already running scheduler is a no-op.

        Args:
            handle_signals: Whether SIGINT and SIGTERM take a final backup
                before the signal's usual effect. Hosts that handle these
                signals themselves pass False and call ``notify_inactive``.

        Raises:
            SchedulerStateError: If another scheduler is running in this process.
        """
        if self.running:
            return
        active = BackupScheduler._active
        if active is not None and active is not self:
            raise SchedulerStateError(
                "Another backup scheduler is already running in this process. "
                "Stop it before starting a new one."
            )
        loop = asyncio.get_running_loop()
        BackupScheduler._active = self
        self._loop = loop
        self._timer = AsyncIOScheduler(event_loop=loop, timezone="UTC")
        self._timer.add_job(
            self._run_interval_backup,
            "interval",
            seconds=self._interval_seconds,
            id=_INTERVAL_JOB_ID,
            coalesce=True,
            max_instances=1,
        )
        self._timer.start()
        self._unsubscribe = self._primary.subscribe(self._on_store_change)
        if handle_signals:
            self._install_signal_handlers(loop)
        self._state = SchedulerState.RUNNING
        _LOGGER.info(
            "backup_scheduler_started",
            interval_seconds=self._interval_seconds,
            debounce_seconds=self._debounce_seconds,
            signals=[sig.name for sig in self._signals],
        )

    def stop(self) -> None:
        """Disarm the timer and triggers; in-flight backups finish on their own.

        Stopping a stopped scheduler is a no-op.
        """
        if not self.running:
            return
        if self._timer is not None:
            self._timer.shutdown(wait=False)
            self._timer = None
        self._cancel_pending()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._remove_signal_handlers()
        if BackupScheduler._active is self:
            BackupScheduler._active = None
        self._state = SchedulerState.STOPPED
        _LOGGER.info("backup_scheduler_stopped", in_flight=len(self._backup_tasks))

    def notify_mutation(self, key: str) -> None:
        """Record an external change to a dataset; protected keys trigger a backup."""
        if self.running and key in self._protected_keys:
            self._trigger(f"mutation:{key}")

    def notify_inactive(self) -> asyncio.Task[str | None] | None:
        """Back up now because the host is hiding or terminating.

        Returns:
            The backup task, which the host may await before exiting, or
            None when the scheduler is stopped.
        """
        if not self.running:
            return None
        self._cancel_pending()
        return self._spawn("inactive")

    async def wait_idle(self) -> None:
        """Wait for backups started by this scheduler to finish."""
        if self._backup_tasks:
            await asyncio.gather(*self._backup_tasks, return_exceptions=True)

    def _on_store_change(self, key: str) -> None:
        self.notify_mutation(key)

    def _on_termination_signal(self, signum: signal.Signals) -> None:
        _LOGGER.info("termination_signal_received", signal=signum.name)
        backup = self.notify_inactive()
        self.stop()
        if backup is None:
            signal.raise_signal(signum)
            return
        backup.add_done_callback(lambda _: signal.raise_signal(signum))

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for signum in _TERMINATION_SIGNALS:
            try:
                loop.add_signal_handler(signum, self._on_termination_signal, signum)
            except (NotImplementedError, RuntimeError) as error:
                _LOGGER.warning("signal_handler_unavailable", signal=signum.name, error=str(error))
                continue
            self._signals.append(signum)

    def _remove_signal_handlers(self) -> None:
        if self._loop is not None:
            for signum in self._signals:
                self._loop.remove_signal_handler(signum)
        self._signals = []

    def _trigger(self, reason: str) -> None:
        if self._pending is not None:
            _LOGGER.debug("backup_trigger_debounced", reason=reason, pending=self._pending_reason)
            return
        self._pending_reason = reason
        self._pending = self._event_loop().call_later(self._debounce_seconds, self._fire_pending)

    def _fire_pending(self) -> None:
        reason = self._pending_reason or "trigger"
        self._pending = None
        self._pending_reason = None
        self._spawn(reason)

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
        self._pending = None
        self._pending_reason = None

    def _spawn(self, reason: str) -> asyncio.Task[str | None]:
        task = self._event_loop().create_task(self._snapshots.run_backup_pass(reason))
        self._backup_tasks.add(task)
        task.add_done_callback(self._backup_tasks.discard)
        return task

    def _event_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise SchedulerStateError(
                "Backup scheduler has no event loop. Call start() inside a running loop first."
            )
        return self._loop

    async def _run_interval_backup(self) -> None:
        if self.running:
            self._spawn("interval")
