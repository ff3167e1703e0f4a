"""Deciding whether an inbound bounce envelope really came from SNS.

Signatures are checked with the ``openssl`` binary against the
certificate named in ``SigningCertURL``, which must be served by an
Amazon SNS host. SignatureVersion 1 uses SHA1, version 2 uses SHA256.
"""
from __future__ import annotations

import abc
import base64
import os
import subprocess
import tempfile
from typing import Any, Iterable
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from src.core.exceptions import SignatureInvalid
from src.utils.logger import logger

DIGESTS = {"1": "-sha1", "2": "-sha256"}


def is_allowed_cert_url(cert_url: str) -> tuple[bool, str]:
    """Only certificates under ``https://sns.<region>.amazonaws.com/SimpleNotificationService-`` are trusted."""
    parsed = urlparse(cert_url)
    if parsed.scheme != "https":
        return False, "SigningCertURL must use https"
    if not parsed.hostname:
        return False, "SigningCertURL missing hostname"
    host = parsed.hostname
    if host != "sns.amazonaws.com" and not (host.startswith("sns.") and host.endswith(".amazonaws.com")):
        return False, "SigningCertURL hostname is not allowed"
    if not parsed.path.startswith("/SimpleNotificationService-"):
        return False, "SigningCertURL path is not allowed"
    return True, "ok"


def _build_string_to_sign(payload: dict[str, Any]) -> str:
    # Notifications sign Subject; confirmations sign SubscribeURL and Token.
    message_type = payload.get("Type")
    if message_type == "Notification":
        fields = ["Message", "MessageId", "Subject", "Timestamp", "TopicArn", "Type"]
    else:
        fields = ["Message", "MessageId", "SubscribeURL", "Timestamp", "Token", "TopicArn", "Type"]

    parts: list[str] = []
    for field in fields:
        value = payload.get(field)
        if value is None:
            continue
        parts.append(field)
        parts.append(str(value))
    return "\n".join(parts) + "\n"


def _fetch_url(url: str, timeout_seconds: int) -> bytes:
    request = Request(url, method="GET")
    with urlopen(request, timeout=timeout_seconds) as response:
        return response.read()


def _run_openssl(args: list[str], input_bytes: bytes | None, timeout_seconds: int) -> subprocess.CompletedProcess:
    return subprocess.run(
        args,
        input=input_bytes,
        capture_output=True,
        check=False,
        timeout=timeout_seconds,
    )


def _write_temp(directory: str, name: str, data: bytes) -> str:
    path = os.path.join(directory, name)
    with open(path, "wb") as fh:
        fh.write(data)
    return path


def _openssl_verify(cert_pem: bytes, signature: bytes, signed: bytes, digest: str, timeout_seconds: int) -> tuple[bool, str]:
    with tempfile.TemporaryDirectory(prefix="sns-verify-") as workdir:
        cert_path = _write_temp(workdir, "signing-cert.pem", cert_pem)
        pubkey = _run_openssl(
            ["openssl", "x509", "-pubkey", "-noout", "-in", cert_path],
            input_bytes=None,
            timeout_seconds=timeout_seconds,
        )
        if pubkey.returncode != 0:
            return False, "Failed to extract public key"
        verify = _run_openssl(
            [
                "openssl", "dgst", digest,
                "-verify", _write_temp(workdir, "pubkey.pem", pubkey.stdout),
                "-signature", _write_temp(workdir, "envelope.sig", signature),
                _write_temp(workdir, "envelope.txt", signed),
            ],
            input_bytes=None,
            timeout_seconds=timeout_seconds,
        )
        if verify.returncode != 0:
            return False, "Signature verification failed"
    return True, "ok"


def verify_sns_signature(payload: dict[str, Any], timeout_seconds: int) -> tuple[bool, str]:
    """Check a bounce envelope's signature; returns ``(ok, reason)`` for the 403 body."""
    digest = DIGESTS.get(str(payload.get("SignatureVersion")))
    if digest is None:
        return False, "Unsupported SignatureVersion"
    signature_b64 = payload.get("Signature")
    cert_url = payload.get("SigningCertURL")
    if not signature_b64 or not cert_url:
        return False, "Missing Signature or SigningCertURL"

    allowed, reason = is_allowed_cert_url(cert_url)
    if not allowed:
        return False, reason

    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except ValueError:
        return False, "Invalid Signature encoding"

    try:
        cert_pem = _fetch_url(cert_url, timeout_seconds)
    except Exception as exc:  # pragma: no cover - network errors
        logger.warning("Could not fetch SNS signing certificate %s: %s", cert_url, exc)
        return False, "Failed to fetch SigningCertURL"

    signed = _build_string_to_sign(payload).encode("utf-8")
    try:
        return _openssl_verify(cert_pem, signature, signed, digest, timeout_seconds)
    except FileNotFoundError:
        return False, "openssl is not available for signature verification"
    except (OSError, subprocess.SubprocessError):
        logger.exception("openssl failed while verifying an SNS envelope")
        return False, "Signature verification error"


class Verifier(abc.ABC):
    """Decides whether an inbound envelope really came from SNS."""

    name = "verifier"

    def __init__(self, allowed_topic_arns: Iterable[str] = ()) -> None:
        self.allowed_topic_arns = set(allowed_topic_arns)

    def _check_topic(self, envelope: dict[str, Any]) -> None:
        if self.allowed_topic_arns and envelope.get("TopicArn") not in self.allowed_topic_arns:
            raise SignatureInvalid(f"TopicArn {envelope.get('TopicArn')!r} is not allowed")

    @abc.abstractmethod
    def verify(self, envelope: dict[str, Any]) -> None:
        """Raise ``SignatureInvalid`` when the envelope must be rejected."""


class AlwaysTrustVerifier(Verifier):
    """UNSAFE: accepts any payload. Only for local development."""

    name = "always-trust (unsafe)"

    def verify(self, envelope: dict[str, Any]) -> None:
        if "Type" in envelope:
            self._check_topic(envelope)


class CertificateChainVerifier(Verifier):
    """Checks the SNS signature against the certificate at SigningCertURL."""

    name = "certificate-chain"

    def __init__(self, timeout_seconds: int, allowed_topic_arns: Iterable[str] = ()) -> None:
        super().__init__(allowed_topic_arns)
        self.timeout_seconds = timeout_seconds

    def verify(self, envelope: dict[str, Any]) -> None:
        if "Type" not in envelope or "Signature" not in envelope:
            raise SignatureInvalid("Payload is not a signed SNS envelope")
        self._check_topic(envelope)
        ok, reason = verify_sns_signature(envelope, self.timeout_seconds)
        if not ok:
            raise SignatureInvalid(reason)


def confirm_subscription(subscribe_url: str, timeout_seconds: int) -> bool:
    allowed, reason = is_allowed_subscribe_url(subscribe_url)
    if not allowed:
        logger.warning("Refusing to confirm SNS subscription at %s: %s", subscribe_url, reason)
        return False
    try:
        _fetch_url(subscribe_url, timeout_seconds)
        return True
    except Exception as exc:  # pragma: no cover - network errors
        logger.warning("Failed to confirm SNS subscription: %s", exc)
        return False


def is_allowed_subscribe_url(subscribe_url: str) -> tuple[bool, str]:
    parsed = urlparse(subscribe_url or "")
    if parsed.scheme != "https" or not parsed.hostname:
        return False, "SubscribeURL must be an https URL"
    host = parsed.hostname
    if host != "sns.amazonaws.com" and not (host.startswith("sns.") and host.endswith(".amazonaws.com")):
        return False, "SubscribeURL hostname is not allowed"
    return True, "ok"
