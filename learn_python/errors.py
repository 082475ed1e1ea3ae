"""Request-level error taxonomy mapped onto failure envelopes."""
from __future__ import annotations

from typing import Optional

from .envelope import Envelope


class ServiceError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_envelope(self) -> Envelope:
        return Envelope.failure(self.message, self.status_code, details=self.details)


class ClientError(ServiceError):
    """Malformed request input."""

    status_code = 400
    default_message = "Bad Request"


class NotFoundError(ServiceError):
    status_code = 404
    default_message = "Resource not found"


class InternalError(ServiceError):
    """Unhandled handler fault; ``details`` carries the cause outside production."""

    @classmethod
    def from_exception(cls, error: BaseException, expose_details: bool) -> "InternalError":
        return cls(details=str(error) if expose_details else None)
