"""Payload builders for the diagnostic endpoints.

Each builder is a pure function of the samples, identity and request data it
is given; the route table in ``api`` supplies those inputs.
"""
from __future__ import annotations

import json
import math
import platform
from typing import Any, Dict, Iterable, List, Tuple

from .config import AppIdentity, Settings
from .envelope import utc_timestamp
from .errors import ClientError
from .metrics import HostStats, ProcessStats

ROUTES: List[Dict[str, str]] = [
    {"path": "/", "method": "GET", "description": "API welcome and documentation"},
    {"path": "/ping", "method": "GET", "description": "Simple ping-pong response"},
    {"path": "/healthz", "method": "GET", "description": "Health check endpoint"},
    {"path": "/info", "method": "GET", "description": "Application and system information"},
    {"path": "/version", "method": "GET", "description": "Application version information"},
    {"path": "/echo", "method": "POST", "description": "Echo back the request body"},
    {"path": "/metrics", "method": "GET", "description": "Prometheus metrics endpoint"},
]

# Rack/CGI keep these two out of the HTTP_ namespace, so they are not echoed.
_UNPREFIXED_HEADERS = {"content-type", "content-length"}


def welcome_payload(identity: AppIdentity) -> Dict[str, Any]:
    return {
        "message": f"Welcome to {identity.name} API",
        "description": "A simple FastAPI microservice for learning and demonstration",
        "documentation": {"openapi": "/openapi.json", "swagger": "/docs"},
        "links": {
            "repository": f"https://github.com/dxas90/{identity.name}",
            "issues": f"https://github.com/dxas90/{identity.name}/issues",
        },
        "endpoints": [dict(route) for route in ROUTES],
    }


def health_payload(identity: AppIdentity, process: ProcessStats, host: HostStats) -> Dict[str, Any]:
    return {
        "status": "healthy",
        "uptime": process.uptime_seconds,
        "timestamp": utc_timestamp(),
        "memory": host.memory.as_dict(),
        "version": identity.version,
        "environment": identity.environment,
    }


def info_payload(
    identity: AppIdentity, settings: Settings, process: ProcessStats, host: HostStats
) -> Dict[str, Any]:
    return {
        "application": identity.as_dict(),
        "system": {
            "platform": platform.platform(),
            "python_version": platform.python_version(),
            "pid": process.pid,
            "uptime": process.uptime_seconds,
            "memory": host.memory.as_dict(),
            "cpu": host.cpu.as_dict(),
        },
        "environment": {
            "app_env": settings.environment,
            "port": str(settings.port),
            "host": settings.host,
        },
    }


def version_payload(identity: AppIdentity) -> Dict[str, str]:
    return {"version": identity.version, "name": identity.name, "environment": identity.environment}


def normalize_header_name(raw: str) -> str:
    """``HTTP_X_FOO`` or ``x-foo`` -> ``X-Foo``."""
    name = raw[len("HTTP_") :] if raw.upper().startswith("HTTP_") else raw
    parts = name.replace("_", "-").split("-")
    return "-".join(part.capitalize() for part in parts)


def echo_headers(headers: Iterable[Tuple[str, str]]) -> Dict[str, str]:
    """Re-cased request headers; repeated headers are joined with ``", "``."""
    echoed: Dict[str, str] = {}
    for name, value in headers:
        if name.lower() in _UNPREFIXED_HEADERS:
            continue
        key = normalize_header_name(name)
        echoed[key] = f"{echoed[key]}, {value}" if key in echoed else value
    return echoed


def _reject_constant(literal: str) -> Any:
    raise ValueError(f"{literal} is not valid JSON")


def _parse_finite_float(literal: str) -> float:
    value = float(literal)
    if not math.isfinite(value):
        raise ValueError(f"{literal} overflows a float")
    return value


def parse_json_body(body: bytes) -> Any:
    """Decode a JSON request body; an empty body is an empty object.

    ``NaN``, ``Infinity`` and overflowing floats are rejected, as is nesting deep
    enough to exhaust the decoder's recursion limit.
    """
    if not body:
        return {}
    try:
        return json.loads(body, parse_constant=_reject_constant, parse_float=_parse_finite_float)
    except (ValueError, RecursionError) as error:
        raise ClientError("Invalid JSON") from error


def echo_payload(body: bytes, headers: Iterable[Tuple[str, str]], method: str) -> Dict[str, Any]:
    return {"echo": parse_json_body(body), "headers": echo_headers(headers), "method": method}
