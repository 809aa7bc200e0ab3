"""Portable backup archives.

This module writes and reads ZIP archives holding one JSON file per
dataset plus a metadata manifest, and uploads archives to S3.
"""

from __future__ import annotations

import json
import tempfile
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from core.config import WardenConfig
from core.constants import ARCHIVE_FORMAT_VERSION, ARCHIVE_METADATA_FILE_NAME
from core.errors import WardenArchiveError, WardenDependencyError
from core.logging_config import get_logger
from core.s3_uri import is_s3_uri, parse_s3_uri
from core.types import ArchiveManifest
from store.primary_store import count_items

_LOGGER = get_logger(__name__)


def export_archive(
    datasets: Mapping[str, Any],
    output: str,
    config: WardenConfig,
    snapshot_id: str | None = None,
) -> ArchiveManifest:
    """Write datasets into a ZIP archive at a local path or S3 URI.

    Args:
        datasets: Dataset name to decoded value.
        output: Local file path or ``s3://bucket/key`` destination.
        config: Runtime config with optional S3 session settings.
        snapshot_id: Snapshot the datasets came from, if any.

    Returns:
        Manifest written into the archive.

    Raises:
        WardenArchiveError: If writing or uploading fails.
        WardenDependencyError: If an S3 upload is requested without boto3.
    """
    manifest = ArchiveManifest(
        export_date=datetime.now(timezone.utc),
        format_version=ARCHIVE_FORMAT_VERSION,
        snapshot_id=snapshot_id,
        dataset_counts={name: count_items(value) for name, value in datasets.items()},
    )
    if not is_s3_uri(output):
        _write_zip(Path(output).expanduser(), datasets, manifest)
        _LOGGER.info("archive_exported", output=output, snapshot_id=snapshot_id)
        return manifest
    location = parse_s3_uri(output)
    s3_client = create_s3_client(config)
    with tempfile.TemporaryDirectory() as temp_dir:
        local_path = Path(temp_dir) / "backup.zip"
        _write_zip(local_path, datasets, manifest)
        try:
            s3_client.upload_file(str(local_path), location.bucket, location.key)
        except Exception as error:
            raise WardenArchiveError(
                f"Failed to upload archive to {output}: {error}. "
                "Check AWS credentials and retry export."
            ) from error
    _LOGGER.info("archive_exported", output=output, snapshot_id=snapshot_id)
    return manifest


def import_archive(archive_path: str) -> tuple[ArchiveManifest, dict[str, Any]]:
    """Read datasets back from a ZIP archive.

    Args:
        archive_path: Local archive file path.

    Returns:
        Pair of archive manifest and dataset name to decoded value.

    Raises:
        WardenArchiveError: If the archive is missing, malformed, or lacks metadata.
    """
    path = Path(archive_path).expanduser()
    try:
        with zipfile.ZipFile(path) as archive:
            names = set(archive.namelist())
            if ARCHIVE_METADATA_FILE_NAME not in names:
                raise WardenArchiveError(
                    f"Invalid backup archive {path}: {ARCHIVE_METADATA_FILE_NAME} not found."
                )
            manifest = _manifest_from_dict(
                json.loads(archive.read(ARCHIVE_METADATA_FILE_NAME).decode("utf-8"))
            )
            datasets = {
                name: json.loads(archive.read(f"{name}.json").decode("utf-8"))
                for name in manifest.dataset_counts
                if f"{name}.json" in names
            }
    except (OSError, zipfile.BadZipFile, ValueError, KeyError) as error:
        raise WardenArchiveError(
            f"Failed to read backup archive {path}: {error}. Provide an archive made by export."
        ) from error
    return manifest, datasets


def create_s3_client(config: WardenConfig) -> Any:
    """Create boto3 S3 client for archive uploads.

    Args:
        config: Runtime config with optional session settings.

    Returns:
        Boto3 S3 client.

    Raises:
        WardenDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise WardenDependencyError(
            "S3 export requires boto3, but it is not installed. "
            "Install boto3 to export archives to s3:// destinations."
        ) from error
    session_kwargs: dict[str, str] = {}
    if config.s3_profile:
        session_kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        session_kwargs["region_name"] = config.s3_region
    session = boto3.session.Session(**session_kwargs)
    return session.client("s3")


def _write_zip(path: Path, datasets: Mapping[str, Any], manifest: ArchiveManifest) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(
                ARCHIVE_METADATA_FILE_NAME, json.dumps(_manifest_to_dict(manifest), indent=2)
            )
            for name, value in datasets.items():
                archive.writestr(f"{name}.json", json.dumps(value, indent=2, sort_keys=True))
    except (OSError, TypeError, ValueError) as error:
        raise WardenArchiveError(
            f"Failed to write backup archive {path}: {error}. Check the destination path."
        ) from error


def _manifest_to_dict(manifest: ArchiveManifest) -> dict[str, object]:
    return {
        "export_date": manifest.export_date.isoformat(),
        "format_version": manifest.format_version,
        "snapshot_id": manifest.snapshot_id,
        "dataset_counts": dict(manifest.dataset_counts),
    }


def _manifest_from_dict(payload: Mapping[str, Any]) -> ArchiveManifest:
    snapshot_id = payload.get("snapshot_id")
    return ArchiveManifest(
        export_date=datetime.fromisoformat(str(payload["export_date"])),
        format_version=str(payload.get("format_version", ARCHIVE_FORMAT_VERSION)),
        snapshot_id=str(snapshot_id) if snapshot_id else None,
        dataset_counts={
            str(name): int(count) for name, count in dict(payload["dataset_counts"]).items()
        },
    )
