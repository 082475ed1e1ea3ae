"""Canonical JSON envelope shared by every enveloped endpoint."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse


def utc_timestamp() -> str:
    """Current instant as RFC3339 UTC with seconds precision, e.g. ``2026-01-01T12:00:00Z``."""
    now = dt.datetime.now(dt.timezone.utc).replace(microsecond=0)
    return now.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Envelope:
    success: bool
    data: Any = None
    error_message: Optional[str] = None
    status_code: int = 200
    details: Optional[str] = None

    @classmethod
    def ok(cls, data: Any, status_code: int = 200) -> "Envelope":
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def failure(cls, message: str, status_code: int, details: Optional[str] = None) -> "Envelope":
        return cls(success=False, error_message=message, status_code=status_code, details=details)

    def to_payload(self) -> Dict[str, Any]:
        """Serialize with the timestamp taken now.

        Success and failure use different key names on purpose; clients depend on
        ``error``/``message``/``statusCode`` for failures.
        """
        if self.success:
            return {"success": True, "data": self.data, "timestamp": utc_timestamp()}

        payload: Dict[str, Any] = {
            "error": True,
            "message": self.error_message,
            "statusCode": self.status_code,
            "timestamp": utc_timestamp(),
        }
        if self.status_code >= 500:
            payload["details"] = self.details
        return payload

    def render(self) -> JSONResponse:
        return JSONResponse(content=self.to_payload(), status_code=self.status_code)
