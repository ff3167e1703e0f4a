"""Shared fixtures: record stores backed by temporary paths."""
from __future__ import annotations

import pytest

from src.services.record_store import CsvRecordStore, SqlRecordStore
from src.services.snapshots import SnapshotArchive


@pytest.fixture
def archive(tmp_path):
    return SnapshotArchive(tmp_path / "backups")


@pytest.fixture
def csv_store(tmp_path, archive):
    store = CsvRecordStore(tmp_path / "bounces_detailed.csv", archive)
    store.initialize()
    return store


@pytest.fixture
def sql_store(archive):
    store = SqlRecordStore.from_url("sqlite:///:memory:", archive)
    store.initialize()
    return store


@pytest.fixture(params=["csv", "sql"])
def store(request):
    return request.getfixturevalue(f"{request.param}_store")
