"""Build the service's components from ``Settings``.

Both the web process and the scheduled job construct their own
instances here; nothing is shared through module globals.
"""
from __future__ import annotations

from datetime import timedelta

from src.core.config import Settings
from src.services.mail_transport import MailTransport, SesTransport, SmtpTransport
from src.services.record_store import CsvRecordStore, RecordStore, SqlRecordStore
from src.services.reporter import Reporter
from src.services.retention import RetentionEngine
from src.services.snapshots import SnapshotArchive
from src.utils.logger import logger
from src.utils.sns import AlwaysTrustVerifier, CertificateChainVerifier, Verifier


def build_record_store(settings: Settings) -> RecordStore:
    archive = SnapshotArchive(settings.backup_dir)
    if settings.storage_backend == "csv":
        return CsvRecordStore(settings.csv_path, archive)
    if settings.storage_backend == "sql":
        return SqlRecordStore.from_url(settings.database_url, archive)
    raise ValueError(f"Unknown storage backend {settings.storage_backend!r}; use 'csv' or 'sql'")


def build_verifier(settings: Settings) -> Verifier:
    if settings.sns_verify_signatures:
        return CertificateChainVerifier(settings.sns_http_timeout_seconds, settings.sns_allowed_topic_arns)
    if settings.is_production and not settings.allow_unverified_sns:
        raise RuntimeError(
            "SNS signature verification is disabled in production. "
            "Set SNS_VERIFY_SIGNATURES=true, or ALLOW_UNVERIFIED_SNS=true to accept the risk."
        )
    logger.warning("SNS signature verification is DISABLED; every inbound payload is trusted")
    return AlwaysTrustVerifier(settings.sns_allowed_topic_arns)


def build_transport(settings: Settings) -> MailTransport:
    if settings.mail_transport == "smtp":
        return SmtpTransport(
            host=settings.smtp_host,
            port=settings.smtp_port,
            secure=settings.smtp_secure,
            user=settings.smtp_user,
            password=settings.smtp_password,
            timeout_seconds=settings.smtp_timeout_seconds,
        )
    if settings.mail_transport == "ses":
        return SesTransport(
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region_name,
        )
    raise ValueError(f"Unknown mail transport {settings.mail_transport!r}; use 'smtp' or 'ses'")


def build_reporter(settings: Settings, transport: MailTransport | None = None) -> Reporter:
    return Reporter(
        transport or build_transport(settings),
        sender=settings.email_from,
        recipients=settings.email_to,
        subject=settings.report_subject,
        attempts=settings.send_attempts,
        retry_delay_seconds=settings.send_retry_delay_seconds,
    )


def build_retention_engine(settings: Settings) -> RetentionEngine:
    store = build_record_store(settings)
    store.initialize()
    return RetentionEngine(
        store,
        build_reporter(settings),
        retention_days=settings.retention_days,
        report_window=timedelta(hours=settings.report_window_hours),
    )
