"""Once-per-tick retention job: snapshot, report, prune records, prune snapshots.

A failed snapshot aborts the tick so nothing destructive runs without a
fresh copy. After that each stage runs on its own; a failure is logged,
recorded in the result, and the next stage still runs.

A record appended between the report read and the prune may or may not
appear in that tick's report.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from src.services.record_store import RecordStore
from src.services.reporter import Reporter
from src.utils.datetime import utcnow
from src.utils.logger import logger

SNAPSHOT = "snapshot"
REPORT = "report"
PRUNE_RECORDS = "prune_records"
PRUNE_SNAPSHOTS = "prune_snapshots"
STAGES = (SNAPSHOT, REPORT, PRUNE_RECORDS, PRUNE_SNAPSHOTS)


@dataclass
class StageOutcome:
    stage: str
    status: str  # "ok", "skipped" or "failed"
    detail: str = ""


@dataclass
class RetentionResult:
    ran_at: datetime
    outcomes: list[StageOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(outcome.status != "failed" for outcome in self.outcomes)

    def outcome(self, stage: str) -> StageOutcome | None:
        for outcome in self.outcomes:
            if outcome.stage == stage:
                return outcome
        return None


class RetentionEngine:
    def __init__(
        self,
        store: RecordStore,
        reporter: Reporter,
        *,
        retention_days: int = 7,
        report_window: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.reporter = reporter
        self.retention = timedelta(days=retention_days)
        self.report_window = report_window
        self._clock = clock

    def _report(self, now: datetime) -> StageOutcome:
        since = now - self.report_window
        records = self.store.query_window(since, now)
        if not records:
            return StageOutcome(REPORT, "skipped", "no bounces in window")
        self.reporter.send(records, since, now)
        return StageOutcome(REPORT, "ok", f"{len(records)} record(s) reported")

    def _prune_records(self, now: datetime) -> StageOutcome:
        removed = self.store.delete_older_than(now - self.retention)
        return StageOutcome(PRUNE_RECORDS, "ok", f"{removed} record(s) removed")

    def _prune_snapshots(self, now: datetime) -> StageOutcome:
        removed = self.store.archive.prune(now - self.retention)
        return StageOutcome(PRUNE_SNAPSHOTS, "ok", f"{removed} snapshot(s) removed")

    def run(self, now: datetime | None = None) -> RetentionResult:
        now = now or self._clock()
        result = RetentionResult(ran_at=now)
        logger.info("Retention tick started at %s", now.isoformat())

        try:
            handle = self.store.snapshot(now)
        except Exception as exc:
            logger.exception("Snapshot failed; skipping the rest of this tick")
            result.outcomes.append(StageOutcome(SNAPSHOT, "failed", str(exc)))
            result.outcomes.extend(StageOutcome(stage, "skipped", "snapshot failed") for stage in STAGES[1:])
            return result
        result.outcomes.append(StageOutcome(SNAPSHOT, "ok", str(handle.path)))

        for stage, runner in ((REPORT, self._report), (PRUNE_RECORDS, self._prune_records), (PRUNE_SNAPSHOTS, self._prune_snapshots)):
            try:
                outcome = runner(now)
            except Exception as exc:
                logger.exception("Retention stage %s failed", stage)
                outcome = StageOutcome(stage, "failed", str(exc))
            result.outcomes.append(outcome)

        for outcome in result.outcomes:
            logger.info("Retention stage %s: %s %s", outcome.stage, outcome.status, outcome.detail)
        return result
