"""Tests for the snapshot archive."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

from src.services.snapshots import SnapshotArchive, parse_snapshot_name, snapshot_name

T = datetime(2026, 10, 17, 0, 0, tzinfo=UTC)


def test_snapshot_name_round_trips():
    created_at = datetime(2026, 10, 17, 1, 2, 3, 456789, tzinfo=UTC)

    assert parse_snapshot_name(snapshot_name(created_at)) == created_at
    assert parse_snapshot_name("notes.txt") is None
    assert parse_snapshot_name("bounces_yesterday.csv.gz") is None


def test_prune_removes_old_snapshots_and_empty_days(tmp_path):
    archive = SnapshotArchive(tmp_path)
    old = archive.create("header\n", T - timedelta(days=9))
    kept = archive.create("header\n", T - timedelta(days=2))
    (tmp_path / "README").write_text("not a snapshot")

    removed = archive.prune(T - timedelta(days=7))

    assert removed == 1
    assert not old.path.exists()
    assert not old.path.parent.exists()
    assert archive.list_snapshots() == [kept]
    assert archive.read(kept) == "header\n"


def test_list_snapshots_on_missing_root(tmp_path):
    assert SnapshotArchive(tmp_path / "missing").list_snapshots() == []
    assert SnapshotArchive(tmp_path / "missing").prune(T) == 0
