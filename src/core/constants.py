"""Core constants used across Warden modules.

This module centralizes storage layout names and engine defaults.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".warden")
PRIMARY_DIR_NAME = "primary"
VERSIONS_DIR_NAME = "versions"
CATALOG_FILE_NAME = "catalog.json"
SECONDARY_DB_FILE_NAME = "secondary.sqlite3"
ARCHIVE_METADATA_FILE_NAME = "metadata.json"
ARCHIVE_FORMAT_VERSION = "1.0"
DEFAULT_BACKUP_INTERVAL_SECONDS = 300.0
DEFAULT_MAX_VERSIONS = 100
DEFAULT_DEBOUNCE_SECONDS = 2.0
DEFAULT_REMOTE_TIMEOUT_SECONDS = 5.0
DEFAULT_WRITE_RETRIES = 3
WRITE_RETRY_BACKOFF_SECONDS = 0.05
DEFAULT_PROTECTED_KEYS = (
    "users",
    "transactions",
    "credit_cards",
    "user_coupons",
    "premium_applications",
    "credit_card_balances",
    "account_number_requests",
)
SHEETS_API_BASE_URL = "https://sheets.googleapis.com/v4/spreadsheets"
SHEET_COLUMN_SPAN = "A:ZZ"
SHEET_PROBE_NAME = "Users"
MAP_SHEET_HEADERS = ("Key", "Value")
