"""Tests for SNS origin verification and subscription helpers."""
from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from src.core.config import Settings
from src.core.exceptions import SignatureInvalid
from src.services.components import build_verifier
from src.utils import sns as sns_utils


def _notification_payload(message: dict, version: str = "1") -> dict:
    return {
        "Type": "Notification",
        "MessageId": "sns-message-id",
        "TopicArn": "arn:aws:sns:ap-southeast-2:123456789012:ses-events",
        "Message": json.dumps(message),
        "Timestamp": "2026-10-17T00:00:00.000Z",
        "SignatureVersion": version,
        "Signature": "dGVzdA==",
        "SigningCertURL": "https://sns.ap-southeast-2.amazonaws.com/SimpleNotificationService-test.pem",
    }


def _fake_fetch(url, timeout_seconds):  # noqa: ARG001
    return b"cert"


def test_verify_sns_signature_happy(monkeypatch):
    payload = _notification_payload({"notificationType": "Bounce"})
    commands = []

    def fake_run(args, input_bytes, timeout_seconds):  # noqa: ARG001
        commands.append(args)
        if "x509" in args:
            return SimpleNamespace(returncode=0, stdout=b"PUBKEY")
        return SimpleNamespace(returncode=0, stdout=b"")

    monkeypatch.setattr(sns_utils, "_fetch_url", _fake_fetch)
    monkeypatch.setattr(sns_utils, "_run_openssl", fake_run)
    ok, _ = sns_utils.verify_sns_signature(payload, 3)

    assert ok is True
    assert "-sha1" in commands[-1]


def test_signature_version_two_uses_sha256(monkeypatch):
    commands = []

    def fake_run(args, input_bytes, timeout_seconds):  # noqa: ARG001
        commands.append(args)
        return SimpleNamespace(returncode=0, stdout=b"PUBKEY")

    monkeypatch.setattr(sns_utils, "_fetch_url", _fake_fetch)
    monkeypatch.setattr(sns_utils, "_run_openssl", fake_run)
    ok, _ = sns_utils.verify_sns_signature(_notification_payload({}, version="2"), 3)

    assert ok is True
    assert "-sha256" in commands[-1]


def test_verify_sns_signature_fail(monkeypatch):
    def fake_run(args, input_bytes, timeout_seconds):  # noqa: ARG001
        return SimpleNamespace(returncode=1, stdout=b"")

    monkeypatch.setattr(sns_utils, "_fetch_url", _fake_fetch)
    monkeypatch.setattr(sns_utils, "_run_openssl", fake_run)
    ok, _ = sns_utils.verify_sns_signature(_notification_payload({}), 3)

    assert ok is False


@pytest.mark.parametrize(
    "cert_url",
    [
        "http://sns.us-east-1.amazonaws.com/SimpleNotificationService-x.pem",
        "https://evil.example.com/SimpleNotificationService-x.pem",
        "https://sns.us-east-1.amazonaws.com/other.pem",
    ],
)
def test_rejects_untrusted_cert_urls(cert_url):
    payload = _notification_payload({})
    payload["SigningCertURL"] = cert_url

    ok, _ = sns_utils.verify_sns_signature(payload, 3)

    assert ok is False


def test_certificate_verifier_raises_on_bad_signature(monkeypatch):
    monkeypatch.setattr(sns_utils, "verify_sns_signature", lambda payload, timeout: (False, "Signature verification failed"))
    verifier = sns_utils.CertificateChainVerifier(timeout_seconds=3)

    with pytest.raises(SignatureInvalid):
        verifier.verify(_notification_payload({}))


def test_string_to_sign_skips_missing_fields():
    payload = {"Type": "Notification", "Message": "m", "MessageId": "id", "Timestamp": "t", "TopicArn": "arn"}

    assert sns_utils._build_string_to_sign(payload) == "Message\nm\nMessageId\nid\nTimestamp\nt\nTopicArn\narn\nType\nNotification\n"


def test_confirm_subscription_refuses_foreign_hosts(monkeypatch):
    fetched = []
    monkeypatch.setattr(sns_utils, "_fetch_url", lambda url, timeout: fetched.append(url))

    assert sns_utils.confirm_subscription("https://attacker.example.com/confirm", 3) is False
    assert sns_utils.confirm_subscription("https://sns.eu-west-1.amazonaws.com/?Action=ConfirmSubscription", 3) is True
    assert fetched == ["https://sns.eu-west-1.amazonaws.com/?Action=ConfirmSubscription"]


def test_build_verifier_defaults_to_certificate_chain():
    assert isinstance(build_verifier(Settings()), sns_utils.CertificateChainVerifier)


def test_build_verifier_refuses_unsafe_production():
    with pytest.raises(RuntimeError):
        build_verifier(Settings(environment="production", sns_verify_signatures=False))


def test_build_verifier_allows_explicit_unsafe_opt_in():
    settings = Settings(environment="production", sns_verify_signatures=False, allow_unverified_sns=True)

    assert isinstance(build_verifier(settings), sns_utils.AlwaysTrustVerifier)
