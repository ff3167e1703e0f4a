"""Append-only, de-duplicating persistence for bounce records.

Two backends share one contract: a CSV file guarded by an on-disk
lock, and a SQL table written in transactions. Appends are all-or-nothing
per call and skip records whose identity is already stored. Windowed
reads are inclusive on both ends and never see rows whose timestamp
cannot be parsed.
"""
from __future__ import annotations

import abc
import fcntl
import os
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterable, Sequence

from sqlalchemy import or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from src.core.exceptions import StoreUnavailable
from src.db import models
from src.db.session import create_db_engine, make_session_factory, session_scope
from src.services.records import BounceRecord, in_window, parse_csv, render_csv
from src.services.snapshots import SnapshotArchive, SnapshotHandle
from src.utils.datetime import parse_instant
from src.utils.logger import logger


class RecordStore(abc.ABC):
    """Contract shared by the storage backends."""

    def __init__(self, archive: SnapshotArchive) -> None:
        self.archive = archive

    @abc.abstractmethod
    def initialize(self) -> None:
        """Create the backing medium if needed. Called once at startup."""

    @abc.abstractmethod
    def append(self, records: Sequence[BounceRecord]) -> int:
        """Persist ``records`` atomically; returns how many were new."""

    @abc.abstractmethod
    def query_window(self, since: datetime | None = None, until: datetime | None = None) -> list[BounceRecord]:
        """Records with ``since <= timestamp <= until`` (``None`` is unbounded)."""

    @abc.abstractmethod
    def delete_older_than(self, horizon: datetime) -> int:
        """Remove records with ``timestamp <= horizon``; returns the count removed."""

    @abc.abstractmethod
    def export_csv(self) -> str | None:
        """The whole dataset as CSV, or ``None`` when there is nothing stored."""

    def snapshot(self, created_at: datetime | None = None) -> SnapshotHandle:
        text = self.export_csv()
        return self.archive.create(text if text is not None else render_csv([]), created_at)


def _unique(records: Iterable[BounceRecord], seen: set) -> list[BounceRecord]:
    fresh = []
    for record in records:
        if record.identity in seen:
            continue
        seen.add(record.identity)
        fresh.append(record)
    return fresh


class CsvRecordStore(RecordStore):
    """Nine-column CSV file with the header always on the first line.

    Every access holds an ``flock`` on a sibling ``.lock`` file: exclusive
    for appends and prunes, shared for reads. The web process and the
    retention worker each build their own store on the same file, so the
    lock has to live on disk rather than in memory.
    """

    def __init__(self, path: str | Path, archive: SnapshotArchive) -> None:
        super().__init__(archive)
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._ready = False
        self._identities: set = set()
        self._stamp: tuple[int, int, int] | None = None

    @contextmanager
    def _file_lock(self, mode: int = fcntl.LOCK_EX):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a") as lock_fd:
            fcntl.flock(lock_fd, mode)
            try:
                yield
            finally:
                fcntl.flock(lock_fd, fcntl.LOCK_UN)

    def initialize(self) -> None:
        try:
            with self._file_lock():
                self._ensure_file()
                identities = self._current_identities()
        except OSError as exc:
            raise StoreUnavailable(f"Cannot open {self.path}: {exc}") from exc
        self._ready = True
        logger.info("CSV record store ready at %s (%s records)", self.path, len(identities))

    def _ensure_file(self) -> None:
        """Write the header into a missing or empty file; end a legacy file's last row."""
        if not self.path.exists() or self.path.stat().st_size == 0:
            self.path.write_text(render_csv([]), encoding="utf-8")
            return
        with self.path.open("rb+") as handle:
            handle.seek(-1, os.SEEK_END)
            if handle.read(1) != b"\n":
                handle.write(b"\n")
                handle.flush()
                os.fsync(handle.fileno())

    def _file_stamp(self) -> tuple[int, int, int] | None:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return None
        return (stat.st_ino, stat.st_size, stat.st_mtime_ns)

    def _current_identities(self) -> set:
        # Another process may have appended or pruned since we last looked.
        stamp = self._file_stamp()
        if stamp != self._stamp:
            self._identities = {record.identity for record in self._read_records()}
            self._stamp = stamp
        return self._identities

    def _read_text(self) -> str:
        return self.path.read_text(encoding="utf-8")

    def _read_records(self) -> list[BounceRecord]:
        if not self.path.exists():
            return []
        return parse_csv(self._read_text())

    def append(self, records: Sequence[BounceRecord]) -> int:
        if not self._ready:
            raise StoreUnavailable("Record store is not initialized")
        try:
            with self._file_lock():
                self._ensure_file()
                seen = set(self._current_identities())
                fresh = _unique(records, seen)
                if not fresh:
                    return 0
                payload = render_csv(fresh, header=False).encode("utf-8")
                with self.path.open("ab") as handle:
                    start = handle.tell()
                    try:
                        handle.write(payload)
                        handle.flush()
                        os.fsync(handle.fileno())
                    except OSError:
                        handle.truncate(start)
                        raise
                self._identities = seen
                self._stamp = self._file_stamp()
        except OSError as exc:
            logger.exception("Failed to append %s record(s) to %s", len(records), self.path)
            raise StoreUnavailable(f"Cannot write {self.path}: {exc}") from exc
        return len(fresh)

    def query_window(self, since: datetime | None = None, until: datetime | None = None) -> list[BounceRecord]:
        try:
            with self._file_lock(fcntl.LOCK_SH):
                records = self._read_records()
        except OSError as exc:
            raise StoreUnavailable(f"Cannot read {self.path}: {exc}") from exc
        return [record for record in records if in_window(record, since, until)]

    def delete_older_than(self, horizon: datetime) -> int:
        horizon = parse_instant(horizon)
        try:
            with self._file_lock():
                records = self._read_records()
                keep = [record for record in records if record.instant is not None and record.instant > horizon]
                partial = self.path.with_name(self.path.name + ".partial")
                partial.write_text(render_csv(keep), encoding="utf-8")
                os.replace(partial, self.path)
                self._identities = {record.identity for record in keep}
                self._stamp = self._file_stamp()
        except OSError as exc:
            logger.exception("Failed to prune %s", self.path)
            raise StoreUnavailable(f"Cannot rewrite {self.path}: {exc}") from exc
        removed = len(records) - len(keep)
        logger.info("Removed %s record(s) at or before %s", removed, horizon.isoformat())
        return removed

    def _locked_text(self) -> str | None:
        try:
            with self._file_lock(fcntl.LOCK_SH):
                if not self.path.exists():
                    return None
                text = self._read_text()
        except OSError as exc:
            raise StoreUnavailable(f"Cannot read {self.path}: {exc}") from exc
        if text and not text.endswith("\n"):
            text += "\n"
        return text

    def export_csv(self) -> str | None:
        text = self._locked_text()
        if text is None or not parse_csv(text):
            return None
        return text

    def snapshot(self, created_at: datetime | None = None) -> SnapshotHandle:
        text = self._locked_text()
        return self.archive.create(text if text is not None else render_csv([]), created_at)


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def _to_row(record: BounceRecord) -> models.BounceRecordRow:
    return models.BounceRecordRow(
        email=record.email,
        email_key=record.email.lower(),
        timestamp=record.timestamp,
        occurred_at=_naive_utc(record.instant),
        source_email=record.source_email,
        source_ip=record.source_ip,
        bounce_type=record.bounce_type,
        bounce_sub_type=record.bounce_sub_type,
        diagnostic_code=record.diagnostic_code,
        reporting_agent=record.reporting_agent,
        feedback_id=record.feedback_id,
    )


def _from_row(row: models.BounceRecordRow) -> BounceRecord:
    return BounceRecord(
        email=row.email,
        timestamp=row.timestamp,
        source_email=row.source_email,
        source_ip=row.source_ip,
        bounce_type=row.bounce_type,
        bounce_sub_type=row.bounce_sub_type,
        diagnostic_code=row.diagnostic_code,
        reporting_agent=row.reporting_agent,
        feedback_id=row.feedback_id,
    )


class SqlRecordStore(RecordStore):
    """``bounce_records`` table; each append is a single transaction."""

    def __init__(self, engine: Engine, archive: SnapshotArchive) -> None:
        super().__init__(archive)
        self.engine = engine
        self._sessions = make_session_factory(engine)
        self._lock = threading.Lock()

    @classmethod
    def from_url(cls, database_url: str, archive: SnapshotArchive) -> "SqlRecordStore":
        return cls(create_db_engine(database_url), archive)

    def initialize(self) -> None:
        try:
            models.Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"Cannot initialize database: {exc}") from exc
        logger.info("SQL record store ready at %s", self.engine.url.render_as_string(hide_password=True))

    def _insert_new(self, records: Sequence[BounceRecord]) -> int:
        with session_scope(self._sessions) as session:
            keys = {record.email.lower() for record in records}
            existing = session.execute(
                select(
                    models.BounceRecordRow.email_key,
                    models.BounceRecordRow.timestamp,
                    models.BounceRecordRow.feedback_id,
                ).where(models.BounceRecordRow.email_key.in_(sorted(keys)))
            ).all()
            seen = {tuple(row) for row in existing}
            fresh = _unique(records, seen)
            session.add_all([_to_row(record) for record in fresh])
        return len(fresh)

    def append(self, records: Sequence[BounceRecord]) -> int:
        if not records:
            return 0
        with self._lock:
            try:
                try:
                    return self._insert_new(records)
                except IntegrityError:
                    # Another process stored some of these first; retry without them.
                    return self._insert_new(records)
            except SQLAlchemyError as exc:
                logger.exception("Failed to append %s record(s)", len(records))
                raise StoreUnavailable(f"Database write failed: {exc}") from exc

    def _select(self, *criteria) -> list[BounceRecord]:
        statement = select(models.BounceRecordRow).where(*criteria).order_by(models.BounceRecordRow.id)
        try:
            with session_scope(self._sessions) as session:
                return [_from_row(row) for row in session.scalars(statement)]
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"Database read failed: {exc}") from exc

    def query_window(self, since: datetime | None = None, until: datetime | None = None) -> list[BounceRecord]:
        column = models.BounceRecordRow.occurred_at
        criteria = [column.is_not(None)]
        if since is not None:
            criteria.append(column >= _naive_utc(since))
        if until is not None:
            criteria.append(column <= _naive_utc(until))
        return self._select(*criteria)

    def delete_older_than(self, horizon: datetime) -> int:
        column = models.BounceRecordRow.occurred_at
        with self._lock:
            try:
                with session_scope(self._sessions) as session:
                    removed = (
                        session.query(models.BounceRecordRow)
                        .filter(or_(column.is_(None), column <= _naive_utc(horizon)))
                        .delete(synchronize_session=False)
                    )
            except SQLAlchemyError as exc:
                logger.exception("Failed to prune bounce_records")
                raise StoreUnavailable(f"Database delete failed: {exc}") from exc
        logger.info("Removed %s record(s) at or before %s", removed, horizon.isoformat())
        return removed

    def export_csv(self) -> str | None:
        records = self._select()
        if not records:
            return None
        return render_csv(records)
