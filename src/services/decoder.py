"""Decode inbound SNS/SES payloads into bounce events.

Upstream publishers are inconsistent about how the inner ``Message`` is
encoded: it may arrive as an object, a JSON string, an escaped JSON
string wrapped in quotes, or a JSON string that itself encodes a JSON
string. ``MESSAGE_STRATEGIES`` lists the decoders tried, in order; the
first one that yields an object wins.
"""
from __future__ import annotations

import json
import re
from typing import Any, Callable, Mapping

from src.core.exceptions import (
    InvalidBounceStructure,
    MalformedMessage,
    MalformedPayload,
    UnsupportedMediaType,
)
from src.services.records import BouncedRecipient, BounceEvent, NotificationKind
from src.utils.datetime import parse_instant

JSON_MEDIA_TYPES = {"application/json", "text/json"}
TEXT_MEDIA_TYPES = {"text/plain"}

# SNS envelope types that never carry a delivery notification.
IGNORED_ENVELOPE_TYPES = {"SubscriptionConfirmation", "UnsubscribeConfirmation"}

_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_$][\w$-]*)\s*:")


def media_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def normalize_loose_json(text: str) -> str:
    """Best-effort repair of near-JSON: single quotes and unquoted keys."""
    text = text.replace("'", '"')
    return _BARE_KEY.sub(r'\1"\2":', text)


def _as_structured(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    raise TypeError("Message is not an object")


def _parse_once(value: Any) -> dict[str, Any]:
    return _as_structured(json.loads(value))


def _strip_escaping(value: Any) -> dict[str, Any]:
    if not isinstance(value, str):
        raise TypeError("Message is not a string")
    text = value.strip().replace('\\"', '"')
    if len(text) >= 2 and text[0] == text[-1] == '"':
        text = text[1:-1]
    return _as_structured(json.loads(text))


def _parse_twice(value: Any) -> dict[str, Any]:
    return _as_structured(json.loads(json.loads(value)))


MESSAGE_STRATEGIES: tuple[tuple[str, Callable[[Any], dict[str, Any]]], ...] = (
    ("structured", _as_structured),
    ("json", _parse_once),
    ("unescaped", _strip_escaping),
    ("double-json", _parse_twice),
)


def decode_message(value: Any) -> dict[str, Any]:
    """Run ``MESSAGE_STRATEGIES`` in order and return the first object produced."""
    for _name, strategy in MESSAGE_STRATEGIES:
        try:
            return strategy(value)
        except (TypeError, ValueError):
            continue
    raise MalformedMessage(value)


def parse_envelope(raw_body: bytes, content_type: str | None) -> dict[str, Any]:
    """Turn a request body into the outer envelope object."""

    kind = media_type(content_type)
    if kind not in JSON_MEDIA_TYPES and kind not in TEXT_MEDIA_TYPES and not kind.endswith("+json"):
        raise UnsupportedMediaType(f"Content-Type {content_type!r} is not supported")

    try:
        text = raw_body.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise MalformedPayload("Body is not valid UTF-8") from exc
    if not text.strip():
        raise MalformedPayload("Body is empty")

    try:
        envelope = json.loads(text)
    except ValueError as exc:
        if kind not in TEXT_MEDIA_TYPES:
            raise MalformedPayload(f"Body is not valid JSON: {exc}") from exc
        try:
            envelope = json.loads(normalize_loose_json(text))
        except ValueError as retry_exc:
            raise MalformedPayload(f"Body could not be normalized to JSON: {retry_exc}") from retry_exc

    if not isinstance(envelope, dict):
        raise MalformedPayload("Body must be a JSON object")
    return envelope


def classify(message: Mapping[str, Any]) -> NotificationKind:
    return NotificationKind.from_value(message.get("notificationType") or message.get("eventType"))


def inner_message(envelope: Mapping[str, Any]) -> dict[str, Any]:
    """Return the SES notification, unwrapping an SNS envelope when present."""
    if "Message" in envelope:
        return decode_message(envelope["Message"])
    return dict(envelope)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _bounce_event(message: Mapping[str, Any]) -> BounceEvent:
    bounce = message.get("bounce")
    mail = message.get("mail")
    if not isinstance(bounce, dict):
        raise InvalidBounceStructure("Bounce notification has no bounce object")
    if not isinstance(mail, dict) or not _text(mail.get("source")):
        raise InvalidBounceStructure("Bounce notification has no mail source")

    recipients: list[BouncedRecipient] = []
    for entry in bounce.get("bouncedRecipients") or []:
        address = _text(entry.get("emailAddress")) if isinstance(entry, dict) else None
        if address is None:
            raise InvalidBounceStructure("Bounced recipient has no emailAddress")
        recipients.append(BouncedRecipient(address, _text(entry.get("diagnosticCode"))))
    if not recipients:
        raise InvalidBounceStructure("Bounce notification has no bouncedRecipients")

    raw_timestamp = _text(bounce.get("timestamp")) or _text(mail.get("timestamp"))
    timestamp = parse_instant(raw_timestamp)
    if timestamp is None:
        raise InvalidBounceStructure(f"Bounce timestamp {raw_timestamp!r} is not a valid instant")

    return BounceEvent(
        notification_kind=NotificationKind.BOUNCE,
        timestamp=timestamp,
        timestamp_raw=raw_timestamp,
        source_email=_text(mail.get("source")),
        source_ip=_text(mail.get("sourceIp")),
        recipients=tuple(recipients),
        bounce_type=_text(bounce.get("bounceType")),
        bounce_sub_type=_text(bounce.get("bounceSubType")),
        reporting_agent=_text(bounce.get("reportingMTA")),
        feedback_id=_text(bounce.get("feedbackId")),
    )


def decode_envelope(envelope: Mapping[str, Any]) -> BounceEvent | None:
    """Decode a parsed envelope; ``None`` means accepted but not a bounce."""

    if envelope.get("Type") in IGNORED_ENVELOPE_TYPES:
        return None
    message = inner_message(envelope)
    if classify(message) is not NotificationKind.BOUNCE:
        return None
    return _bounce_event(message)


def decode(raw_body: bytes, content_type: str | None) -> BounceEvent | None:
    return decode_envelope(parse_envelope(raw_body, content_type))
