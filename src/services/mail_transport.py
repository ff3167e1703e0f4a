"""Outbound transports for the daily report: SMTP or AWS SES."""
from __future__ import annotations

import abc
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from src.utils.logger import logger


@dataclass
class OutboundReport:
    """A rendered report ready to hand to a transport."""

    sender: str
    recipients: list[str]
    subject: str
    body: str
    attachment_name: str
    attachment: str

    def to_mime(self) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        message["Subject"] = self.subject
        message.set_content(self.body)
        message.add_attachment(
            self.attachment.encode("utf-8"),
            maintype="text",
            subtype="csv",
            filename=self.attachment_name,
        )
        return message


class MailTransport(abc.ABC):
    @abc.abstractmethod
    def send(self, report: OutboundReport) -> str:
        """Deliver ``report``; returns a provider id or raises on failure."""


class SmtpTransport(MailTransport):
    """Plain SMTP relay; ``secure`` selects implicit TLS, otherwise STARTTLS when offered."""

    def __init__(
        self,
        *,
        host: str | None,
        port: int,
        secure: bool = False,
        user: str | None = None,
        password: str | None = None,
        timeout_seconds: int = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.secure = secure
        self.user = user
        self.password = password
        self.timeout_seconds = timeout_seconds

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.secure:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout_seconds, context=context)
        client = smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds)
        client.ehlo()
        if client.has_extn("starttls"):
            client.starttls(context=context)
            client.ehlo()
        return client

    def send(self, report: OutboundReport) -> str:
        if not self.host:
            raise RuntimeError("SMTP host is required. Set SMTP_HOST in the environment.")
        with self._connect() as client:
            if self.user and self.password:
                client.login(self.user, self.password)
            refused = client.send_message(report.to_mime(), from_addr=report.sender, to_addrs=report.recipients)
        if refused:
            logger.warning("SMTP server refused recipients: %s", sorted(refused))
        logger.info("Report sent via SMTP %s:%s to %s", self.host, self.port, report.recipients)
        return ""


class SesTransport(MailTransport):
    """Encapsulates the boto3 SES client."""

    def __init__(
        self,
        aws_access_key_id: str | None = None,
        aws_secret_access_key: str | None = None,
        region_name: str | None = None,
    ) -> None:
        self.aws_access_key_id = aws_access_key_id
        self.aws_secret_access_key = aws_secret_access_key
        self.region_name = region_name
        self._client = None

    def _client_or_raise(self):
        if self._client is None:
            if not self.region_name:
                raise RuntimeError("AWS region is required for SES. Set AWS_REGION_NAME in the environment.")

            client_kwargs = {"region_name": self.region_name}
            if self.aws_access_key_id and self.aws_secret_access_key:
                client_kwargs["aws_access_key_id"] = self.aws_access_key_id
                client_kwargs["aws_secret_access_key"] = self.aws_secret_access_key

            self._client = boto3.client("ses", **client_kwargs)
        return self._client

    def send(self, report: OutboundReport) -> str:
        client = self._client_or_raise()
        try:
            response = client.send_raw_email(
                Source=report.sender,
                Destinations=report.recipients,
                RawMessage={"Data": report.to_mime().as_bytes()},
            )
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Failed to send report via SES")
            raise RuntimeError("SES send_raw_email failed") from exc

        message_id = response.get("MessageId", "")
        logger.info("SES send_raw_email message_id=%s", message_id)
        return message_id
