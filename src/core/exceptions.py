"""Error taxonomy shared by the intake path and the retention job."""
from __future__ import annotations

from typing import Any


class BounceHandlerError(Exception):
    """Base error carrying the HTTP status used when it reaches a route."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.error)
        self.message = message or self.error

    def details(self) -> Any:
        return None


class DecodeError(BounceHandlerError):
    status_code = 400
    error = "Invalid notification"

    def details(self) -> Any:
        return self.message


class UnsupportedMediaType(DecodeError):
    status_code = 415
    error = "Unsupported media type"


class MalformedPayload(DecodeError):
    error = "Malformed payload"


class MalformedMessage(DecodeError):
    """The inner ``Message`` could not be decoded by any strategy."""

    error = "Invalid Message format"

    def __init__(self, raw: Any, message: str | None = None) -> None:
        super().__init__(message or "Message could not be decoded as JSON")
        self.raw = raw

    def details(self) -> Any:
        return {"reason": self.message, "raw": self.raw if isinstance(self.raw, str) else repr(self.raw)}


class InvalidBounceStructure(DecodeError):
    error = "Invalid bounce structure"


class SignatureInvalid(BounceHandlerError):
    status_code = 403
    error = "Signature verification failed"

    def details(self) -> Any:
        return self.message


class StoreError(BounceHandlerError):
    error = "Storage error"


class StoreUnavailable(StoreError):
    error = "Storage unavailable"


class SendError(BounceHandlerError):
    error = "Report delivery failed"

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        super().__init__(f"Report delivery failed after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error
