"""Unit tests for the backup scheduler lifecycle and triggers."""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import Iterator

import pytest

from core.errors import SchedulerStateError
from protect.scheduler import BackupScheduler, SchedulerState
from protect.snapshot_manager import SnapshotManager
from store.primary_store import MemoryPrimaryStore
from tests.fakes import build_manager, make_config


@pytest.fixture(autouse=True)
def _reset_active_scheduler() -> Iterator[None]:
    yield
    BackupScheduler._active = None


def _scheduler(
    manager: SnapshotManager,
    primary: MemoryPrimaryStore,
    interval_seconds: float = 3600.0,
    debounce_seconds: float = 0.05,
) -> BackupScheduler:
    return BackupScheduler(
        manager,
        primary,
        ("users", "transactions"),
        interval_seconds=interval_seconds,
        debounce_seconds=debounce_seconds,
    )


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent(tmp_path) -> None:
    """Repeated start/stop calls should not fail or change state twice."""
    primary = MemoryPrimaryStore()
    scheduler = _scheduler(build_manager(make_config(tmp_path), primary), primary)

    scheduler.start()
    scheduler.start()
    assert scheduler.state is SchedulerState.RUNNING
    scheduler.stop()
    scheduler.stop()

    assert scheduler.state is SchedulerState.STOPPED


@pytest.mark.asyncio
async def test_second_scheduler_cannot_start(tmp_path) -> None:
    """Only one scheduler may run per process."""
    primary = MemoryPrimaryStore()
    manager = build_manager(make_config(tmp_path), primary)
    first = _scheduler(manager, primary)
    second = _scheduler(manager, primary)
    first.start()

    with pytest.raises(SchedulerStateError):
        second.start()

    first.stop()
    second.start()
    assert second.running
    second.stop()


@pytest.mark.asyncio
async def test_interval_timer_creates_snapshots(tmp_path) -> None:
    """The repeating timer should snapshot on every interval."""
    primary = MemoryPrimaryStore({"users": []})
    manager = build_manager(make_config(tmp_path), primary)
    scheduler = _scheduler(manager, primary, interval_seconds=0.1)

    scheduler.start()
    await asyncio.sleep(0.5)
    scheduler.stop()
    await scheduler.wait_idle()

    assert len(manager.list_snapshots()) >= 2


@pytest.mark.asyncio
async def test_mutation_triggers_are_debounced(tmp_path) -> None:
    """A burst of protected-key writes collapses into one snapshot."""
    primary = MemoryPrimaryStore({"users": []})
    manager = build_manager(make_config(tmp_path), primary)
    scheduler = _scheduler(manager, primary, debounce_seconds=0.1)
    scheduler.start()

    for balance in (100, 90, 80):
        primary.set("users", [{"id": 1, "balance": balance}])
    await asyncio.sleep(0.3)
    await scheduler.wait_idle()
    scheduler.stop()

    snapshots = manager.list_snapshots()
    assert len(snapshots) == 1
    latest = manager.get_snapshot(snapshots[0].snapshot_id)
    assert '"balance": 80' in latest.contents["users"]


@pytest.mark.asyncio
async def test_unprotected_mutation_is_ignored(tmp_path) -> None:
    """Writes to unprotected keys do not trigger backups."""
    primary = MemoryPrimaryStore()
    manager = build_manager(make_config(tmp_path), primary)
    scheduler = _scheduler(manager, primary)
    scheduler.start()

    primary.set("theme", "dark")
    await asyncio.sleep(0.15)
    scheduler.stop()

    assert manager.list_snapshots() == []


@pytest.mark.asyncio
async def test_inactive_flushes_pending_trigger(tmp_path) -> None:
    """Going inactive snapshots at once and absorbs a pending mutation trigger."""
    primary = MemoryPrimaryStore({"users": []})
    manager = build_manager(make_config(tmp_path), primary)
    scheduler = _scheduler(manager, primary, debounce_seconds=0.1)
    scheduler.start()

    primary.set("users", [{"id": 1}])
    backup = scheduler.notify_inactive()
    assert backup is not None
    snapshot_id = await backup
    await asyncio.sleep(0.2)
    await scheduler.wait_idle()
    scheduler.stop()

    assert [summary.snapshot_id for summary in manager.list_snapshots()] == [snapshot_id]


@pytest.mark.asyncio
async def test_stop_cancels_pending_trigger(tmp_path) -> None:
    """A trigger still inside its debounce window is dropped on stop."""
    primary = MemoryPrimaryStore({"users": []})
    manager = build_manager(make_config(tmp_path), primary)
    scheduler = _scheduler(manager, primary, debounce_seconds=0.1)
    scheduler.start()

    primary.set("users", [{"id": 1}])
    scheduler.stop()
    await asyncio.sleep(0.2)

    assert manager.list_snapshots() == []


@pytest.mark.asyncio
async def test_stop_lets_in_flight_backup_finish(tmp_path) -> None:
    """Stopping does not cancel a backup that already started."""
    primary = MemoryPrimaryStore({"users": []})
    manager = build_manager(make_config(tmp_path), primary)
    scheduler = _scheduler(manager, primary)
    scheduler.start()

    backup = scheduler.notify_inactive()
    scheduler.stop()
    assert backup is not None
    snapshot_id = await backup

    assert snapshot_id is not None
    assert scheduler.notify_inactive() is None


@pytest.mark.asyncio
async def test_termination_signal_takes_final_backup(
    tmp_path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """SIGTERM backs up, stops the scheduler, then re-delivers the signal."""
    primary = MemoryPrimaryStore({"users": [{"id": 1}]})
    manager = build_manager(make_config(tmp_path), primary)
    scheduler = _scheduler(manager, primary)
    redelivered: list[int] = []
    monkeypatch.setattr(signal, "raise_signal", redelivered.append)
    scheduler.start()
    assert signal.getsignal(signal.SIGTERM) is not signal.SIG_DFL

    os.kill(os.getpid(), signal.SIGTERM)
    await asyncio.sleep(0.2)
    await scheduler.wait_idle()

    assert redelivered == [signal.SIGTERM]
    assert scheduler.state is SchedulerState.STOPPED
    assert len(manager.list_snapshots()) == 1
    assert signal.getsignal(signal.SIGTERM) is signal.SIG_DFL


@pytest.mark.asyncio
async def test_hosts_can_keep_their_own_signal_handling(tmp_path) -> None:
    """Starting without signal handling leaves process handlers untouched."""
    primary = MemoryPrimaryStore()
    scheduler = _scheduler(build_manager(make_config(tmp_path), primary), primary)
    before = signal.getsignal(signal.SIGTERM)

    scheduler.start(handle_signals=False)
    during = signal.getsignal(signal.SIGTERM)
    scheduler.stop()

    assert during is before


def test_triggers_require_a_started_scheduler(tmp_path) -> None:
    """Arming a trigger before start reports a state error."""
    primary = MemoryPrimaryStore()
    scheduler = _scheduler(build_manager(make_config(tmp_path), primary), primary)

    with pytest.raises(SchedulerStateError, match="start"):
        scheduler._trigger("mutation:users")
