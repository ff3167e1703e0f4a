"""Tests for settings parsing and component wiring."""
from __future__ import annotations

import pytest
from pydantic import ValidationError

from src.core.config import Settings
from src.queue import jobs
from src.services.components import build_record_store, build_transport
from src.services.mail_transport import SesTransport, SmtpTransport
from src.services.record_store import CsvRecordStore, SqlRecordStore


def test_defaults():
    settings = Settings()

    assert settings.port == 5001
    assert settings.retention_days == 7
    assert settings.send_attempts == 3


def test_lists_accept_comma_separated_strings(monkeypatch):
    monkeypatch.setenv("EMAIL_TO", "ops@example.org, oncall@example.org")

    assert Settings().email_to == ["ops@example.org", "oncall@example.org"]


@pytest.mark.parametrize("overrides", [{"email_from": "not-an-address"}, {"retention_days": 0}])
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_build_record_store(tmp_path):
    csv_settings = Settings(storage_backend="CSV", csv_path=str(tmp_path / "b.csv"))
    sql_settings = Settings(storage_backend="sql", database_url="'sqlite:///:memory:'")

    assert isinstance(build_record_store(csv_settings), CsvRecordStore)
    assert isinstance(build_record_store(sql_settings), SqlRecordStore)
    with pytest.raises(ValueError):
        build_record_store(Settings(storage_backend="mongo"))


def test_build_transport():
    assert isinstance(build_transport(Settings(mail_transport="smtp")), SmtpTransport)
    assert isinstance(build_transport(Settings(mail_transport="ses")), SesTransport)


def test_retention_tick_job_runs_against_settings(tmp_path, monkeypatch):
    settings = Settings(csv_path=str(tmp_path / "b.csv"), backup_dir=str(tmp_path / "backups"))
    monkeypatch.setattr(jobs, "get_settings", lambda: settings)

    summary = jobs.run_retention_tick()

    assert summary["ok"] is True
    assert [stage["status"] for stage in summary["stages"]] == ["ok", "skipped", "ok", "ok"]


def test_retention_tick_job_never_raises(monkeypatch):
    monkeypatch.setattr(jobs, "get_settings", lambda: Settings(storage_backend="mongo"))

    assert jobs.run_retention_tick() == {"ok": False, "stages": []}
