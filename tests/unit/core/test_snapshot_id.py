"""Unit tests for snapshot id generation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from core.snapshot_id import SnapshotIdGenerator, parse_snapshot_id


def test_ids_are_unique_within_one_clock_tick() -> None:
    """Repeated ids at the same instant must still differ and sort in order."""
    generator = SnapshotIdGenerator()
    instant = datetime(2026, 1, 1, tzinfo=timezone.utc)

    ids = [generator.next_id(instant)[0] for _ in range(50)]

    assert len(set(ids)) == 50
    assert ids == sorted(ids)


def test_ids_stay_ordered_when_clock_steps_back() -> None:
    """A backwards clock step must not produce an id that sorts earlier."""
    generator = SnapshotIdGenerator()
    now = datetime(2026, 1, 1, 12, tzinfo=timezone.utc)

    first, _ = generator.next_id(now)
    second, _ = generator.next_id(now - timedelta(hours=1))

    assert second > first


def test_generator_continues_after_persisted_id() -> None:
    """Seeding from the newest stored id keeps ordering across restarts."""
    stored = "20990101T000000000000Z-000041"
    generator = SnapshotIdGenerator(stored)

    next_id, _ = generator.next_id(datetime(2026, 1, 1, tzinfo=timezone.utc))

    assert next_id > stored
    assert parse_snapshot_id(next_id)[1] == 42


def test_parse_snapshot_id_rejects_malformed_ids() -> None:
    """Ids without a numeric sequence part are invalid."""
    with pytest.raises(ValueError):
        parse_snapshot_id("backup_latest")


def test_ids_sort_past_a_million_within_one_tick() -> None:
    """The sequence field is wide enough to keep lexical order past 999999."""
    instant = datetime(2026, 1, 1, tzinfo=timezone.utc)
    generator = SnapshotIdGenerator(f"20260101T000000000000Z-{999_999:012d}")

    next_id, _ = generator.next_id(instant)

    assert next_id == "20260101T000000000000Z-000001000000"
    assert next_id > f"20260101T000000000000Z-{999_999:012d}"
