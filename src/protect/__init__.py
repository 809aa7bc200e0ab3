"""Data protection engine.

This package snapshots protected datasets, mirrors them remotely,
schedules backups, and restores prior versions on demand.
"""
