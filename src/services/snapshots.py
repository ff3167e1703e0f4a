"""Compressed point-in-time copies of the bounce dataset."""
from __future__ import annotations

import gzip
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from src.utils.datetime import utcnow
from src.utils.logger import logger

SNAPSHOT_PREFIX = "bounces_"
SNAPSHOT_SUFFIX = ".csv.gz"
_STAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"


@dataclass(frozen=True, order=True)
class SnapshotHandle:
    created_at: datetime
    path: Path


def snapshot_name(created_at: datetime) -> str:
    return f"{SNAPSHOT_PREFIX}{created_at.astimezone(UTC).strftime(_STAMP_FORMAT)}{SNAPSHOT_SUFFIX}"


def parse_snapshot_name(name: str) -> datetime | None:
    if not (name.startswith(SNAPSHOT_PREFIX) and name.endswith(SNAPSHOT_SUFFIX)):
        return None
    stamp = name[len(SNAPSHOT_PREFIX) : -len(SNAPSHOT_SUFFIX)]
    try:
        return datetime.strptime(stamp, _STAMP_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        return None


class SnapshotArchive:
    """Snapshots live under ``<root>/<YYYY-MM-DD>/bounces_<instant>.csv.gz``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def create(self, csv_text: str, created_at: datetime | None = None) -> SnapshotHandle:
        created_at = (created_at or utcnow()).astimezone(UTC)
        day_dir = self.root / created_at.strftime("%Y-%m-%d")
        day_dir.mkdir(parents=True, exist_ok=True)
        target = day_dir / snapshot_name(created_at)
        partial = target.with_name(target.name + ".partial")
        with gzip.open(partial, "wt", encoding="utf-8", newline="") as handle:
            handle.write(csv_text)
        os.replace(partial, target)
        logger.info("Snapshot written to %s", target)
        return SnapshotHandle(created_at=created_at, path=target)

    def list_snapshots(self) -> list[SnapshotHandle]:
        if not self.root.exists():
            return []
        handles = []
        for path in self.root.glob(f"*/{SNAPSHOT_PREFIX}*{SNAPSHOT_SUFFIX}"):
            created_at = parse_snapshot_name(path.name)
            if created_at is not None:
                handles.append(SnapshotHandle(created_at=created_at, path=path))
        return sorted(handles)

    def read(self, handle: SnapshotHandle) -> str:
        with gzip.open(handle.path, "rt", encoding="utf-8", newline="") as fh:
            return fh.read()

    def prune(self, horizon: datetime) -> int:
        """Delete snapshots created before ``horizon``; returns how many went."""
        removed = 0
        for handle in self.list_snapshots():
            if handle.created_at >= horizon:
                continue
            handle.path.unlink(missing_ok=True)
            removed += 1
            day_dir = handle.path.parent
            if day_dir != self.root and not any(day_dir.iterdir()):
                day_dir.rmdir()
        logger.info("Pruned %s snapshot(s) older than %s", removed, horizon.isoformat())
        return removed
