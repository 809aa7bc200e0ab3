"""Runtime configuration model for Warden.

This module owns all environment variable and deployment file parsing.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
import os
from pathlib import Path
from typing import Any, Mapping, cast

from core.constants import (
    DEFAULT_BACKUP_INTERVAL_SECONDS,
    DEFAULT_DATA_ROOT,
    DEFAULT_DEBOUNCE_SECONDS,
    DEFAULT_MAX_VERSIONS,
    DEFAULT_PROTECTED_KEYS,
    DEFAULT_REMOTE_TIMEOUT_SECONDS,
    DEFAULT_WRITE_RETRIES,
)
from core.errors import WardenConfigError, WardenDependencyError


@dataclass(frozen=True)
class WardenConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for primary data and snapshots.
        protected_keys: Dataset names subject to protection.
        backup_interval_seconds: Period of scheduled backups.
        max_versions: Retention cap for snapshots.
        debounce_seconds: Window in which event triggers collapse.
        remote_timeout_seconds: Cap applied to every remote mirror call.
        write_retries: Secondary store write attempts before failing.
        sheets_spreadsheet_id: Optional Google Sheets mirror target.
        sheets_token: Optional OAuth bearer token for the mirror.
        s3_region: Optional default AWS region for archive uploads.
        s3_profile: Optional AWS profile for boto3 sessions.
    """

    data_root: Path
    protected_keys: tuple[str, ...] = DEFAULT_PROTECTED_KEYS
    backup_interval_seconds: float = DEFAULT_BACKUP_INTERVAL_SECONDS
    max_versions: int = DEFAULT_MAX_VERSIONS
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    remote_timeout_seconds: float = DEFAULT_REMOTE_TIMEOUT_SECONDS
    write_retries: int = DEFAULT_WRITE_RETRIES
    sheets_spreadsheet_id: str | None = None
    sheets_token: str | None = None
    s3_region: str | None = None
    s3_profile: str | None = None

    def __post_init__(self) -> None:
        _validate_config(self)

    @classmethod
    def from_env(cls) -> "WardenConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            WardenConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("WARDEN_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        keys_value = os.getenv("WARDEN_PROTECTED_KEYS")
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            protected_keys=(
                _parse_key_list(keys_value) if keys_value else DEFAULT_PROTECTED_KEYS
            ),
            backup_interval_seconds=_parse_float(
                "WARDEN_BACKUP_INTERVAL_SECONDS", DEFAULT_BACKUP_INTERVAL_SECONDS
            ),
            max_versions=_parse_int("WARDEN_MAX_VERSIONS", DEFAULT_MAX_VERSIONS),
            debounce_seconds=_parse_float("WARDEN_DEBOUNCE_SECONDS", DEFAULT_DEBOUNCE_SECONDS),
            remote_timeout_seconds=_parse_float(
                "WARDEN_REMOTE_TIMEOUT_SECONDS", DEFAULT_REMOTE_TIMEOUT_SECONDS
            ),
            write_retries=_parse_int("WARDEN_WRITE_RETRIES", DEFAULT_WRITE_RETRIES),
            sheets_spreadsheet_id=os.getenv("WARDEN_SHEETS_SPREADSHEET_ID"),
            sheets_token=os.getenv("WARDEN_SHEETS_TOKEN"),
            s3_region=os.getenv("WARDEN_S3_REGION"),
            s3_profile=os.getenv("WARDEN_S3_PROFILE"),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "WardenConfig":
        """Build config from a YAML deployment file over environment defaults.

        Args:
            config_path: Path to the YAML deployment file.

        Returns:
            A validated config object.

        Raises:
            WardenDependencyError: If PyYAML is unavailable.
            WardenConfigError: If the file is missing or has invalid fields.
        """
        payload = _load_yaml_mapping(config_path)
        base = cls.from_env()
        known_fields = {item.name for item in fields(cls)}
        unknown_fields = sorted(set(payload) - known_fields)
        if unknown_fields:
            raise WardenConfigError(
                f"Unknown config fields in {config_path}: {', '.join(unknown_fields)}. "
                f"Use only: {', '.join(sorted(known_fields))}."
            )
        overrides: dict[str, Any] = dict(payload)
        if "data_root" in overrides:
            overrides["data_root"] = Path(str(overrides["data_root"])).expanduser().resolve()
        if "protected_keys" in overrides:
            overrides["protected_keys"] = _coerce_key_list(overrides["protected_keys"])
        try:
            return replace(base, **overrides)
        except TypeError as error:
            raise WardenConfigError(
                f"Invalid config file {config_path}: {error}. Check field types and retry."
            ) from error


def _validate_config(config: WardenConfig) -> None:
    """Validate cross-field config invariants.

    Raises:
        WardenConfigError: If any value is out of range.
    """
    if config.backup_interval_seconds <= 0:
        raise WardenConfigError(
            "backup_interval_seconds must be positive. Set WARDEN_BACKUP_INTERVAL_SECONDS > 0."
        )
    if config.max_versions <= 0:
        raise WardenConfigError("max_versions must be positive. Set WARDEN_MAX_VERSIONS > 0.")
    if config.debounce_seconds < 0:
        raise WardenConfigError("debounce_seconds must not be negative.")
    if config.remote_timeout_seconds <= 0:
        raise WardenConfigError("remote_timeout_seconds must be positive.")
    if config.write_retries < 1:
        raise WardenConfigError("write_retries must be at least 1.")
    if not config.protected_keys:
        raise WardenConfigError("protected_keys must name at least one dataset.")
    if any(not key for key in config.protected_keys):
        raise WardenConfigError("protected_keys must not contain empty names.")
    if len(set(config.protected_keys)) != len(config.protected_keys):
        raise WardenConfigError("protected_keys must not contain duplicates.")


def _parse_key_list(raw_value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in raw_value.split(","))


def _coerce_key_list(raw_value: object) -> tuple[str, ...]:
    if isinstance(raw_value, str):
        return _parse_key_list(raw_value)
    if isinstance(raw_value, (list, tuple)):
        return tuple(str(item).strip() for item in raw_value)
    raise WardenConfigError(
        f"protected_keys must be a list of names, got {type(raw_value).__name__}."
    )


def _parse_int(variable: str, default: int) -> int:
    """Parse an integer environment value.

    Raises:
        WardenConfigError: If value cannot be parsed into int.
    """
    raw_value = os.getenv(variable)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError as error:
        raise WardenConfigError(
            f"Invalid {variable} value: expected integer, got '{raw_value}'. "
            f"Set {variable} to a numeric value."
        ) from error


def _parse_float(variable: str, default: float) -> float:
    """Parse a float environment value.

    Raises:
        WardenConfigError: If value cannot be parsed into float.
    """
    raw_value = os.getenv(variable)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError as error:
        raise WardenConfigError(
            f"Invalid {variable} value: expected number, got '{raw_value}'. "
            f"Set {variable} to a numeric value."
        ) from error


def _load_yaml_mapping(config_path: str) -> Mapping[str, object]:
    try:
        import yaml  # type: ignore[import-untyped]
    except ImportError as error:  # pragma: no cover - dependency failure
        raise WardenDependencyError(
            "YAML config support requires PyYAML. Install with 'pip install pyyaml'."
        ) from error
    config_file = Path(config_path).expanduser().resolve()
    if not config_file.exists():
        raise WardenConfigError(
            f"Config file does not exist at {config_file}. Provide a valid YAML file path."
        )
    try:
        payload = cast(object, yaml.safe_load(config_file.read_text(encoding="utf-8")))
    except OSError as error:
        raise WardenConfigError(
            f"Failed to read config at {config_file}: {error}. Check file permissions and retry."
        ) from error
    except yaml.YAMLError as error:
        raise WardenConfigError(
            f"Failed to parse YAML config at {config_file}: {error}. Fix YAML syntax and retry."
        ) from error
    if payload is None:
        return {}
    if not isinstance(payload, dict) or not all(isinstance(key, str) for key in payload):
        raise WardenConfigError(
            f"Invalid config at {config_file}: expected a mapping of field names to values."
        )
    return payload
