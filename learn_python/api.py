"""FastAPI application exposing the diagnostic endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import AppIdentity, Settings, get_settings
from .envelope import Envelope
from .errors import NotFoundError, ServiceError
from .handlers import echo_payload, health_payload, info_payload, version_payload, welcome_payload
from .metrics import HostStatsProbe
from .middleware import RequestPipelineMiddleware, build_post_hooks, build_pre_hooks
from .telemetry import MetricsSink, Tracer, configure_metrics_sink, configure_tracer

# GET routes also answer HEAD.
READ_METHODS = ["GET", "HEAD"]


def create_app(
    settings: Optional[Settings] = None,
    probe: Optional[HostStatsProbe] = None,
    metrics_sink: Optional[MetricsSink] = None,
    tracer: Optional[Tracer] = None,
) -> FastAPI:
    settings = settings or get_settings()
    probe = probe or HostStatsProbe()
    metrics_sink = metrics_sink or configure_metrics_sink(settings)
    tracer = tracer or configure_tracer(settings)
    identity = AppIdentity.from_settings(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Diagnostic and demonstration endpoints with a uniform JSON envelope.",
        version=settings.app_version,
    )
    app.state.settings = settings
    app.state.identity = identity
    app.state.metrics_sink = metrics_sink

    app.add_middleware(
        RequestPipelineMiddleware,
        settings=settings,
        pre_hooks=build_pre_hooks(settings, metrics_sink),
        post_hooks=build_post_hooks(settings),
        metrics_sink=metrics_sink,
        tracer=tracer,
    )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        return exc.to_envelope().render()

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # A method mismatch on a known path is still an unmatched route.
        if exc.status_code in (404, 405):
            return NotFoundError().to_envelope().render()
        return Envelope.failure(str(exc.detail), exc.status_code).render()

    @app.api_route("/", methods=READ_METHODS, summary="API welcome and documentation", tags=["diagnostics"])
    def index() -> JSONResponse:
        return Envelope.ok(welcome_payload(identity)).render()

    @app.api_route("/ping", methods=READ_METHODS, summary="Simple ping-pong response", tags=["diagnostics"])
    def ping() -> PlainTextResponse:
        return PlainTextResponse("pong")

    @app.api_route("/healthz", methods=READ_METHODS, summary="Health check endpoint", tags=["diagnostics"])
    def healthz() -> JSONResponse:
        return Envelope.ok(health_payload(identity, probe.process_sample(), probe.sample())).render()

    @app.api_route("/info", methods=READ_METHODS, summary="Application and system information", tags=["diagnostics"])
    def info() -> JSONResponse:
        return Envelope.ok(info_payload(identity, settings, probe.process_sample(), probe.sample())).render()

    @app.api_route("/version", methods=READ_METHODS, summary="Application version information", tags=["diagnostics"])
    def version() -> JSONResponse:
        return Envelope.ok(version_payload(identity)).render()

    @app.post("/echo", summary="Echo back the request body", tags=["diagnostics"])
    async def echo(request: Request) -> JSONResponse:
        body = await request.body()
        return Envelope.ok(echo_payload(body, request.headers.items(), request.method)).render()

    @app.api_route("/metrics", methods=READ_METHODS, summary="Prometheus metrics endpoint", tags=["diagnostics"])
    def metrics() -> Response:
        if not metrics_sink.enabled:
            return Response(status_code=204)
        return Response(content=metrics_sink.render_text(), media_type=metrics_sink.content_type)

    @app.options("/{path:path}", include_in_schema=False)
    def preflight(path: str) -> Response:
        return Response(status_code=200)

    return app
