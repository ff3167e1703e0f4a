"""Tests for the /sns and /download routes."""
from __future__ import annotations

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from src.api.app import create_app
from src.api.routes import sns as sns_route
from src.core import rate_limit
from src.core.config import Settings
from src.core.exceptions import StoreUnavailable
from src.services.record_store import CsvRecordStore
from src.utils.sns import AlwaysTrustVerifier, CertificateChainVerifier

TOPIC_ARN = "arn:aws:sns:us-east-1:123456789012:ses-bounces"


def _settings(tmp_path, **overrides) -> Settings:
    values = {
        "csv_path": str(tmp_path / "bounces_detailed.csv"),
        "backup_dir": str(tmp_path / "backups"),
        "sns_verify_signatures": False,
        "rate_limit_per_minute": 1000,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path):
    return _settings(tmp_path)


@pytest.fixture
def client(settings):
    app = create_app(settings=settings, verifier=AlwaysTrustVerifier())
    with TestClient(app) as test_client:
        yield test_client


def _bounce_message(*emails: str) -> dict:
    return {
        "notificationType": "Bounce",
        "bounce": {
            "bounceType": "Permanent",
            "bounceSubType": "General",
            "bouncedRecipients": [{"emailAddress": email} for email in emails],
            "timestamp": "2026-10-17T10:00:00.000Z",
            "feedbackId": "fb-1",
        },
        "mail": {"source": "sender@example.org", "sourceIp": "203.0.113.10"},
    }


def _notification(message) -> dict:
    return {"Type": "Notification", "MessageId": "sns-message-id", "TopicArn": TOPIC_ARN, "Message": message}


def test_bounce_is_stored_and_downloadable(client):
    response = client.post("/sns", json=_notification(json.dumps(_bounce_message("a@example.com", "b@example.com"))))

    assert response.status_code == 200
    assert response.json() == {"message": "Notification processed", "recorded": 2}

    download = client.get("/download")
    assert download.status_code == 200
    assert download.headers["content-type"].startswith("text/csv")
    assert download.headers["content-disposition"].startswith('attachment; filename="bounces_detailed_')
    lines = download.text.splitlines()
    assert lines[0].startswith("Bounced Email,Timestamp,Source Email,Source IP")
    assert lines[1].startswith("a@example.com,2026-10-17T10:00:00.000Z,sender@example.org,203.0.113.10")
    assert len(lines) == 3


def test_redelivery_is_acknowledged_without_new_rows(client):
    payload = _notification(json.dumps(_bounce_message("a@example.com")))

    client.post("/sns", json=payload)
    response = client.post("/sns", json=payload)

    assert response.status_code == 200
    assert response.json()["recorded"] == 0


def test_double_encoded_message_is_accepted(client):
    payload = _notification(json.dumps(json.dumps(_bounce_message("a@example.com"))))

    response = client.post("/sns", json=payload)

    assert response.status_code == 200
    assert response.json()["recorded"] == 1


def test_sns_text_plain_delivery_is_accepted(client):
    body = json.dumps(_notification(json.dumps(_bounce_message("a@example.com"))))

    response = client.post("/sns", content=body, headers={"Content-Type": "text/plain; charset=UTF-8"})

    assert response.status_code == 200


def test_complaint_is_ignored(client):
    message = {"notificationType": "Complaint", "complaint": {}, "mail": {"source": "sender@example.org"}}

    response = client.post("/sns", json=_notification(json.dumps(message)))

    assert response.status_code == 200
    assert response.json() == {"message": "Notification ignored"}
    assert client.get("/download").status_code == 404


def test_subscription_confirmation_is_acknowledged(client):
    payload = {"Type": "SubscriptionConfirmation", "TopicArn": TOPIC_ARN, "SubscribeURL": "https://sns.us-east-1.amazonaws.com/?Action=ConfirmSubscription"}

    response = client.post("/sns", json=payload)

    assert response.status_code == 200
    assert response.json() == {"message": "Subscription confirmation received"}


def test_subscription_auto_confirm(tmp_path, monkeypatch):
    calls = []

    def fake_confirm(url, timeout_seconds):  # noqa: ARG001
        calls.append(url)
        return True

    monkeypatch.setattr(sns_route, "confirm_subscription", fake_confirm)
    app = create_app(settings=_settings(tmp_path, sns_auto_confirm=True), verifier=AlwaysTrustVerifier())
    payload = {"Type": "SubscriptionConfirmation", "TopicArn": TOPIC_ARN, "SubscribeURL": "https://sns.us-east-1.amazonaws.com/confirm"}

    with TestClient(app) as client:
        response = client.post("/sns", json=payload)

    assert response.json() == {"message": "Subscription confirmed"}
    assert calls == ["https://sns.us-east-1.amazonaws.com/confirm"]


def test_unparseable_message_is_bad_request(client):
    response = client.post("/sns", json=_notification("{not json"))

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid Message format"
    assert body["details"]["raw"] == "{not json"


def test_bounce_without_recipients_is_bad_request(client):
    response = client.post("/sns", json=_notification(json.dumps(_bounce_message())))

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid bounce structure"


def test_unsupported_content_type(client):
    response = client.post("/sns", content=b"<xml/>", headers={"Content-Type": "application/xml"})

    assert response.status_code == 415
    assert "error" in response.json()


def test_store_failure_is_internal_error(settings, monkeypatch):
    store = CsvRecordStore(settings.csv_path, archive=None)

    def broken_append(records):
        raise StoreUnavailable("disk gone")

    monkeypatch.setattr(store, "append", broken_append)
    app = create_app(settings=settings, store=store, verifier=AlwaysTrustVerifier())

    with TestClient(app) as client:
        response = client.post("/sns", json=_notification(json.dumps(_bounce_message("a@example.com"))))

    assert response.status_code == 500
    assert response.json() == {"error": "Storage unavailable"}


def test_unexpected_failure_is_internal_error(settings, monkeypatch):
    store = CsvRecordStore(settings.csv_path, archive=None)

    def exploding_append(records):
        raise KeyError("boom")

    monkeypatch.setattr(store, "append", exploding_append)
    app = create_app(settings=settings, store=store, verifier=AlwaysTrustVerifier())

    with TestClient(app) as client:
        response = client.post("/sns", json=_notification(json.dumps(_bounce_message("a@example.com"))))

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_download_before_any_bounce_is_not_found(client):
    response = client.get("/download")

    assert response.status_code == 404
    assert response.json() == {"error": "CSV file not found"}


def test_unsigned_payload_rejected_by_certificate_verifier(settings):
    app = create_app(settings=settings, verifier=CertificateChainVerifier(timeout_seconds=1))

    with TestClient(app) as client:
        response = client.post("/sns", json=_bounce_message("a@example.com"))

    assert response.status_code == 403
    assert response.json()["error"] == "Signature verification failed"


def test_topic_allow_list(settings):
    app = create_app(settings=settings, verifier=AlwaysTrustVerifier(["arn:aws:sns:us-east-1:123456789012:other"]))

    with TestClient(app) as client:
        response = client.post("/sns", json=_notification(json.dumps(_bounce_message("a@example.com"))))

    assert response.status_code == 403


def test_rate_limit(tmp_path):
    app = create_app(settings=_settings(tmp_path, rate_limit_per_minute=2), verifier=AlwaysTrustVerifier())

    with TestClient(app) as client:
        statuses = [client.get("/download").status_code for _ in range(3)]
        last = client.get("/download")

    assert statuses[:2] == [404, 404]
    assert statuses[2] == 429
    assert last.json() == {"error": "Rate limit exceeded. Please try again shortly."}


def test_rate_limiter_forgets_idle_clients(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr(rate_limit.time, "monotonic", lambda: clock[0])
    limiter = rate_limit.RateLimiter(max_per_minute=5)

    asyncio.run(limiter.check("/sns:198.51.100.1"))
    clock[0] += 30
    asyncio.run(limiter.check("/sns:198.51.100.2"))
    assert set(limiter._allowance) == {"/sns:198.51.100.1", "/sns:198.51.100.2"}

    clock[0] += 45
    asyncio.run(limiter.check("/sns:198.51.100.3"))
    assert set(limiter._allowance) == {"/sns:198.51.100.2", "/sns:198.51.100.3"}


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
