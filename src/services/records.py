"""Bounce event and record types plus the flat CSV schema they share."""
from __future__ import annotations

import csv
import io
from dataclasses import astuple, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Sequence

from src.utils.datetime import parse_instant

UNKNOWN = "Unknown"
NOT_PROVIDED = "Not provided"

CSV_HEADER = (
    "Bounced Email",
    "Timestamp",
    "Source Email",
    "Source IP",
    "Bounce Type",
    "Bounce SubType",
    "Diagnostic Code",
    "Reporting MTA",
    "Feedback ID",
)


class NotificationKind(str, Enum):
    BOUNCE = "Bounce"
    COMPLAINT = "Complaint"
    SUBSCRIPTION_CONFIRMATION = "SubscriptionConfirmation"
    OTHER = "Other"

    @classmethod
    def from_value(cls, value: object) -> "NotificationKind":
        for kind in cls:
            if isinstance(value, str) and value.lower() == kind.value.lower():
                return kind
        return cls.OTHER


@dataclass(frozen=True)
class BouncedRecipient:
    email_address: str
    diagnostic_code: str | None = None


@dataclass(frozen=True)
class BounceEvent:
    """A decoded bounce notification, before it is flattened for storage."""

    notification_kind: NotificationKind
    timestamp: datetime
    timestamp_raw: str
    source_email: str | None
    source_ip: str | None
    recipients: tuple[BouncedRecipient, ...] = field(default_factory=tuple)
    bounce_type: str | None = None
    bounce_sub_type: str | None = None
    reporting_agent: str | None = None
    feedback_id: str | None = None

    def to_records(self) -> list["BounceRecord"]:
        """Flatten into one record per bounced recipient."""
        return [
            BounceRecord(
                email=recipient.email_address,
                timestamp=self.timestamp_raw,
                source_email=self.source_email or UNKNOWN,
                source_ip=self.source_ip or UNKNOWN,
                bounce_type=self.bounce_type or UNKNOWN,
                bounce_sub_type=self.bounce_sub_type or UNKNOWN,
                diagnostic_code=recipient.diagnostic_code or NOT_PROVIDED,
                reporting_agent=self.reporting_agent or UNKNOWN,
                feedback_id=self.feedback_id or NOT_PROVIDED,
            )
            for recipient in self.recipients
        ]


@dataclass(frozen=True)
class BounceRecord:
    """One persisted row; field order is the CSV column order."""

    email: str
    timestamp: str
    source_email: str = UNKNOWN
    source_ip: str = UNKNOWN
    bounce_type: str = UNKNOWN
    bounce_sub_type: str = UNKNOWN
    diagnostic_code: str = NOT_PROVIDED
    reporting_agent: str = UNKNOWN
    feedback_id: str = NOT_PROVIDED

    @property
    def instant(self) -> datetime | None:
        return parse_instant(self.timestamp)

    @property
    def identity(self) -> tuple[str, str, str]:
        """Key used to drop redelivered notifications."""
        return (self.email.lower(), self.timestamp, self.feedback_id)

    def as_row(self) -> tuple[str, ...]:
        return astuple(self)

    @classmethod
    def from_row(cls, row: Sequence[str]) -> "BounceRecord":
        values = list(row[: len(CSV_HEADER)])
        if len(values) < 2:
            raise ValueError(f"row has {len(values)} column(s), expected {len(CSV_HEADER)}")
        # Legacy four-column rows get placeholders for the missing fields.
        defaults = cls("", "").as_row()
        values.extend(defaults[len(values):])
        return cls(*[value if value != "" else defaults[index] for index, value in enumerate(values)])


def in_window(record: BounceRecord, since: datetime | None, until: datetime | None) -> bool:
    """``since <= timestamp <= until``; unparseable timestamps never match."""
    instant = record.instant
    if instant is None:
        return False
    if since is not None and instant < parse_instant(since):
        return False
    if until is not None and instant > parse_instant(until):
        return False
    return True


def render_csv(records: Iterable[BounceRecord], *, header: bool = True) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    if header:
        writer.writerow(CSV_HEADER)
    for record in records:
        writer.writerow(record.as_row())
    return buffer.getvalue()


def parse_csv(text: str) -> list[BounceRecord]:
    """Parse CSV text (header optional), skipping blank or short rows."""
    records: list[BounceRecord] = []
    for row in csv.reader(io.StringIO(text)):
        if not row or row[0] == CSV_HEADER[0]:
            continue
        try:
            records.append(BounceRecord.from_row(row))
        except ValueError:
            continue
    return records
