"""Tests for the request pipeline hooks and their failure isolation."""
from __future__ import annotations

import logging
from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient

from learn_python.config import Settings
from learn_python.middleware import SECURITY_HEADERS, build_pre_hooks, log_request
from learn_python.telemetry import NullMetricsSink, OpenTelemetryTracer, PrometheusMetricsSink

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _with_failing_route(client: TestClient) -> TestClient:
    def explode() -> None:
        raise RuntimeError("handler exploded")

    client.app.add_api_route("/explode", explode, methods=["GET"])
    return client


def _assert_fixed_headers(response, cors_origin: str = "*") -> None:
    for name, value in SECURITY_HEADERS.items():
        assert response.headers[name] == value
    expected_cors = dict(CORS_HEADERS, **{"Access-Control-Allow-Origin": cors_origin})
    for name, value in expected_cors.items():
        assert response.headers[name] == value


@pytest.mark.parametrize(
    "method, path, body, expected_status",
    [
        ("GET", "/healthz", None, 200),
        ("GET", "/ping", None, 200),
        ("POST", "/echo", "{bad json", 400),
        ("GET", "/nope", None, 404),
        ("GET", "/explode", None, 500),
        ("OPTIONS", "/healthz", None, 200),
        ("GET", "/metrics", None, 204),
    ],
)
def test_headers_present_on_every_status(client: TestClient, method, path, body, expected_status) -> None:
    _with_failing_route(client)

    response = client.request(method, path, content=body)

    assert response.status_code == expected_status
    _assert_fixed_headers(response)


def test_cors_origin_comes_from_settings(make_client) -> None:
    client = make_client(Settings(environment="test", cors_origin="https://example.test", metrics_enabled=False))

    _assert_fixed_headers(client.get("/nope"), cors_origin="https://example.test")


def test_handler_fault_becomes_internal_error_envelope(client: TestClient) -> None:
    response = _with_failing_route(client).get("/explode")

    body = response.json()
    assert response.status_code == 500
    assert list(body) == ["error", "message", "statusCode", "timestamp", "details"]
    assert body["message"] == "Internal Server Error"
    assert body["details"] == "handler exploded"


def test_handler_fault_details_hidden_in_production(make_client) -> None:
    client = _with_failing_route(make_client(Settings(environment="production", metrics_enabled=False)))

    body = client.get("/explode").json()

    assert body["statusCode"] == 500
    assert body["details"] is None


def test_pre_stage_skipped_in_test_mode(test_settings: Settings) -> None:
    assert build_pre_hooks(test_settings, PrometheusMetricsSink()) == []


def test_pre_stage_without_metrics_only_logs() -> None:
    hooks = build_pre_hooks(Settings(environment="development"), NullMetricsSink())

    assert hooks == [log_request]


def test_pre_stage_logs_method_path_and_user_agent(make_client, caplog: pytest.LogCaptureFixture) -> None:
    client = make_client(Settings(environment="development", metrics_enabled=False))
    caplog.set_level(logging.INFO, logger="learn_python.middleware")

    client.get("/ping", headers={"User-Agent": "probe/1.0"})

    records = [record for record in caplog.records if record.name == "learn_python.middleware"]
    assert [record.getMessage() for record in records] == ["GET /ping - User-Agent: probe/1.0"]
    assert (records[0].method, records[0].path, records[0].user_agent) == ("GET", "/ping", "probe/1.0")


def test_pre_stage_silent_in_test_mode(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="learn_python.middleware")

    client.get("/ping")

    assert not [record for record in caplog.records if record.name == "learn_python.middleware"]


class _ExplodingSink:
    enabled = True
    content_type = "text/plain"

    def increment_counter(self, name, labels):
        raise RuntimeError("counter backend down")

    def observe_histogram(self, name, labels, value):
        raise RuntimeError("histogram backend down")

    def render_text(self):
        return "# nothing\n"


def test_metrics_sink_failures_never_reach_the_client(make_client) -> None:
    client = make_client(Settings(environment="development"), metrics_sink=_ExplodingSink())

    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "healthy"


class _BrokenOtelTracer:
    def start_as_current_span(self, name, attributes=None):
        raise RuntimeError("exporter misconfigured")


class _BrokenExitSpan:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        raise RuntimeError("span end failed")


class _BrokenExitTracer:
    def start_as_current_span(self, name, attributes=None):
        return _BrokenExitSpan()


@pytest.mark.parametrize("otel_tracer", [_BrokenOtelTracer(), _BrokenExitTracer()])
def test_tracer_failures_do_not_change_responses(make_client, test_settings: Settings, otel_tracer) -> None:
    client = make_client(test_settings, tracer=OpenTelemetryTracer(otel_tracer))

    response = client.get("/version")

    assert response.status_code == 200
    assert response.json()["data"]["version"] == "1.2.3"


class _RecordingTracer:
    def __init__(self) -> None:
        self.spans = []

    @contextmanager
    def span(self, name, attributes=None):
        self.spans.append((name, dict(attributes or {})))
        yield


def test_dispatch_runs_inside_a_span(make_client, test_settings: Settings) -> None:
    tracer = _RecordingTracer()
    client = make_client(test_settings, tracer=tracer)

    client.get("/ping")

    assert tracer.spans == [("GET /ping", {"http.method": "GET", "http.target": "/ping"})]
