"""Application configuration powered by environment variables."""
from __future__ import annotations

from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load variables from a local .env file if present. This keeps runtime flexible.
load_dotenv()


class Settings(BaseSettings):
    """Strongly typed configuration for the service."""

    app_name: str = "SES Bounce Handler"
    environment: str = "development"
    api_version: str = "v1"
    host: str = "0.0.0.0"
    port: int = 5001

    storage_backend: str = "csv"
    csv_path: str = "data/bounces_detailed.csv"
    database_url: str = "sqlite:///data/bounces.db"
    backup_dir: str = "data/backups"

    retention_days: int = 7
    report_window_hours: int = 24
    report_cron: str = "0 0 * * *"
    report_subject: str = "Daily Bounced Emails Report"

    mail_transport: str = "smtp"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_secure: bool = False
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_timeout_seconds: int = 30
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_region_name: str = "us-east-1"
    email_from: str = "no-reply@example.com"
    email_to: List[str] = []
    send_attempts: int = 3
    send_retry_delay_seconds: float = 5.0

    sns_verify_signatures: bool = True
    allow_unverified_sns: bool = False
    sns_allowed_topic_arns: List[str] = []
    sns_auto_confirm: bool = False
    sns_http_timeout_seconds: int = 5

    rate_limit_per_minute: int = 120
    redis_url: str = "redis://localhost:6379/0"
    rq_queue_name: str = "bounces"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    @field_validator("database_url", mode="before")
    @classmethod
    def strip_wrapping_quotes(cls, value: str) -> str:
        """Allow quoted URLs in env files."""
        if isinstance(value, str):
            return value.strip().strip('"').strip("'")
        return value

    @field_validator("email_to", "sns_allowed_topic_arns", mode="before")
    @classmethod
    def split_csv(cls, value: str | List[str]) -> List[str]:
        """Allow comma separated lists in env files."""
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("email_from")
    @classmethod
    def validate_sender(cls, value: str) -> str:
        if "@" not in value:
            raise ValueError("email_from must contain '@'")
        return value

    @field_validator("retention_days")
    @classmethod
    def validate_retention(cls, value: int) -> int:
        if value < 1:
            raise ValueError("retention_days must be at least 1")
        return value

    @field_validator("storage_backend", "mail_transport", "environment")
    @classmethod
    def lowercase(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """Return a cached Settings instance for reuse across the app."""

    return Settings()


settings = get_settings()
