"""Warden CLI entry points.
This module exposes admin commands for snapshots, restores, and archives.
It maps argparse commands onto protection engine calls.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from dataclasses import replace
from pathlib import Path
from typing import Any, Sequence

from core.config import WardenConfig
from core.constants import PRIMARY_DIR_NAME
from core.errors import WardenError
from protect.engine import ProtectionEngine
from store.primary_store import JsonDirectoryPrimaryStore


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="warden", description="Warden data protection CLI")
    parser.add_argument("--data-root", help="Override WARDEN_DATA_ROOT for this command")
    parser.add_argument("--config", help="YAML deployment file with protected keys and limits")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("snapshot", help="Take a snapshot of all protected datasets now")
    subparsers.add_parser("versions", help="List retained snapshots, newest first")
    subparsers.add_parser("status", help="Show protection status and dataset sizes")
    _add_restore_command(subparsers)
    _add_purge_command(subparsers)
    _add_export_command(subparsers)
    _add_import_command(subparsers)
    _add_run_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the Warden CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return asyncio.run(_dispatch(args))
    except WardenError as error:
        print(f"error={error}")
        return 1


async def _dispatch(args: argparse.Namespace) -> int:
    engine = _build_engine(args.data_root, args.config)
    try:
        if args.command == "snapshot":
            print(await engine.create_snapshot())
            return 0
        if args.command == "versions":
            return _run_versions_command(engine)
        if args.command == "status":
            return _run_status_command(engine)
        if args.command == "restore":
            restored = await engine.restore(args.snapshot_id)
            print(f"restored={','.join(restored) or '-'}")
            return 0
        if args.command == "purge":
            await engine.purge_snapshot(args.snapshot_id)
            print(f"purged={args.snapshot_id}")
            return 0
        if args.command == "export":
            manifest = await engine.export_archive(args.output, snapshot_id=args.snapshot_id)
            print(f"exported={args.output}\tdatasets={len(manifest.dataset_counts)}")
            return 0
        if args.command == "import":
            manifest = await engine.import_archive(args.archive)
            print(f"imported={args.archive}\tdatasets={len(manifest.dataset_counts)}")
            return 0
        if args.command == "run":
            return await _run_scheduler(engine, args.duration)
    finally:
        await engine.aclose()
    raise WardenError(f"Unsupported command: {args.command}")


def _build_engine(data_root: str | None, config_file: str | None) -> ProtectionEngine:
    """Build an engine over a directory-backed primary store.

    Args:
        data_root: Optional override path.
        config_file: Optional YAML deployment file.

    Returns:
        Configured protection engine.
    """
    config = WardenConfig.from_file(config_file) if config_file else WardenConfig.from_env()
    if data_root:
        config = replace(config, data_root=Path(data_root).expanduser().resolve())
    primary = JsonDirectoryPrimaryStore(config.data_root / PRIMARY_DIR_NAME)
    return ProtectionEngine.new(config, primary)


def _run_versions_command(engine: ProtectionEngine) -> int:
    for summary in engine.list_snapshots():
        print(
            f"{summary.snapshot_id}\t"
            f"{summary.size_bytes}\t"
            f"{summary.created_at.isoformat()}"
        )
    return 0


def _run_status_command(engine: ProtectionEngine) -> int:
    status = engine.status()
    mirror = status.mirror
    print(f"snapshot_count={status.snapshot_count}")
    print(f"latest_snapshot_id={status.latest_snapshot_id or '-'}")
    print(f"mirror_available={str(mirror.available).lower()}")
    print(f"mirror_last_sync_at={mirror.last_sync_at.isoformat() if mirror.last_sync_at else '-'}")
    for name, size in status.dataset_sizes.items():
        print(f"dataset={name}\titems={size}")
    return 0


async def _run_scheduler(engine: ProtectionEngine, duration: float | None) -> int:
    """Run scheduled backups until a termination signal or the duration elapses."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except (NotImplementedError, RuntimeError):
            continue
    engine.start(handle_signals=False)
    print("running")
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=duration)
    except asyncio.TimeoutError:
        pass
    final_backup = engine.scheduler.notify_inactive()
    if final_backup is not None:
        snapshot_id = await final_backup
        print(f"final_snapshot={snapshot_id or '-'}")
    return 0


def _add_restore_command(subparsers: Any) -> None:
    """Register restore subcommand."""
    parser = subparsers.add_parser("restore", help="Overwrite protected datasets from a snapshot")
    parser.add_argument("snapshot_id", help="Snapshot id from 'warden versions'")


def _add_purge_command(subparsers: Any) -> None:
    """Register purge subcommand."""
    parser = subparsers.add_parser("purge", help="Permanently delete one snapshot")
    parser.add_argument("snapshot_id", help="Snapshot id from 'warden versions'")


def _add_export_command(subparsers: Any) -> None:
    """Register export subcommand."""
    parser = subparsers.add_parser("export", help="Write a ZIP backup archive")
    parser.add_argument("output", help="Local .zip path or s3://bucket/key destination")
    parser.add_argument("--snapshot-id", help="Export this snapshot instead of live data")


def _add_import_command(subparsers: Any) -> None:
    """Register import subcommand."""
    parser = subparsers.add_parser("import", help="Overwrite protected datasets from an archive")
    parser.add_argument("archive", help="Local .zip archive made by 'warden export'")


def _add_run_command(subparsers: Any) -> None:
    """Register run subcommand."""
    parser = subparsers.add_parser("run", help="Run scheduled backups until interrupted")
    parser.add_argument("--duration", type=float, help="Stop after this many seconds")
