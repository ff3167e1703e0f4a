"""Daily bounce report: CSV attachment plus per-sub-type summary."""
from __future__ import annotations

import time
from collections import Counter
from datetime import datetime
from typing import Callable, Sequence

from src.core.exceptions import SendError
from src.services.mail_transport import MailTransport, OutboundReport
from src.services.records import UNKNOWN, BounceRecord, render_csv
from src.services.template_engine import render_template
from src.utils.datetime import utcnow
from src.utils.logger import logger

REPORT_TEMPLATE = "bounce_report.txt.j2"


def summarize(records: Sequence[BounceRecord]) -> list[tuple[str, int]]:
    """Counts per bounce sub-type, largest first, ties by name."""
    counts = Counter(record.bounce_sub_type or UNKNOWN for record in records)
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


class Reporter:
    def __init__(
        self,
        transport: MailTransport,
        *,
        sender: str,
        recipients: list[str],
        subject: str = "Daily Bounced Emails Report",
        attempts: int = 3,
        retry_delay_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transport = transport
        self.sender = sender
        self.recipients = recipients
        self.subject = subject
        self.attempts = max(1, attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def build(
        self,
        records: Sequence[BounceRecord],
        window_start: datetime | None = None,
        window_end: datetime | None = None,
    ) -> OutboundReport:
        window_end = window_end or utcnow()
        attachment_name = f"bounces_{window_end:%Y-%m-%d}.csv"
        body = render_template(
            REPORT_TEMPLATE,
            window_start=window_start.isoformat() if window_start else "the beginning",
            window_end=window_end.isoformat(),
            total=len(records),
            by_sub_type=summarize(records),
            attachment_name=attachment_name,
        )
        return OutboundReport(
            sender=self.sender,
            recipients=list(self.recipients),
            subject=self.subject,
            body=body,
            attachment_name=attachment_name,
            attachment=render_csv(records),
        )

    def send(
        self,
        records: Sequence[BounceRecord],
        window_start: datetime | None = None,
        window_end: datetime | None = None,
    ) -> str:
        """Deliver the report, retrying the whole send on any transport failure."""

        if not self.recipients:
            raise SendError(0, RuntimeError("No report recipients configured. Set EMAIL_TO in the environment."))
        report = self.build(records, window_start, window_end)
        last_error: Exception | None = None
        for attempt in range(1, self.attempts + 1):
            try:
                message_id = self.transport.send(report)
            except Exception as exc:
                last_error = exc
                logger.warning("Report send attempt %s/%s failed: %s", attempt, self.attempts, exc)
                if attempt < self.attempts:
                    self._sleep(self.retry_delay_seconds)
                continue
            logger.info("Report with %s record(s) sent on attempt %s", len(records), attempt)
            return message_id
        raise SendError(self.attempts, last_error)
