"""Request pipeline: ordered pre-hooks, traced dispatch, guaranteed post-hooks."""
from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Sequence

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match
from starlette.types import ASGIApp

from .config import Settings
from .errors import InternalError
from .telemetry import REQUEST_DURATION_SECONDS, REQUESTS_TOTAL, MetricsSink, NullMetricsSink, NullTracer, Tracer

logger = logging.getLogger(__name__)

PreHook = Callable[[Request], None]
PostHook = Callable[[Request, Response], None]

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'",
}
CORS_ALLOW_METHODS = "GET, POST, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type"
# The response status is not known before dispatch.
IN_FLIGHT_STATUS = "200"
UNMATCHED_PATH_LABEL = "<unmatched>"


def log_request(request: Request) -> None:
    user_agent = request.headers.get("user-agent") or "Unknown"
    logger.info(
        "%s %s - User-Agent: %s",
        request.method,
        request.url.path,
        user_agent,
        extra={"method": request.method, "path": request.url.path, "user_agent": user_agent},
    )


def route_label(request: Request) -> str:
    """Route template for metric labels; paths no route serves share one label."""
    for route in getattr(request.scope.get("app"), "routes", ()):
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", request.url.path)
    return UNMATCHED_PATH_LABEL


def make_request_counter(metrics_sink: MetricsSink) -> PreHook:
    def count_request(request: Request) -> None:
        labels = {"method": request.method, "path": route_label(request), "status": IN_FLIGHT_STATUS}
        try:
            metrics_sink.increment_counter(REQUESTS_TOTAL, labels)
        except Exception:  # pylint: disable=broad-except
            logger.debug("Metrics sink rejected %s", REQUESTS_TOTAL, exc_info=True)

    return count_request


def apply_security_headers(request: Request, response: Response) -> None:
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value


def make_cors_headers(origin: str) -> PostHook:
    def apply_cors_headers(request: Request, response: Response) -> None:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
        response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS

    return apply_cors_headers


def build_pre_hooks(settings: Settings, metrics_sink: MetricsSink) -> List[PreHook]:
    if settings.is_test:
        return []
    hooks: List[PreHook] = [log_request]
    if metrics_sink.enabled:
        hooks.append(make_request_counter(metrics_sink))
    return hooks


def build_post_hooks(settings: Settings) -> List[PostHook]:
    return [apply_security_headers, make_cors_headers(settings.cors_origin)]


class RequestPipelineMiddleware(BaseHTTPMiddleware):
    """Runs pre-hooks, dispatches, then applies post-hooks on every exit path.

    Handler faults that escape the route become a 500 failure envelope here,
    inside the middleware, so the post-hooks still see a response.
    """

    def __init__(
        self,
        app: ASGIApp,
        settings: Settings,
        pre_hooks: Sequence[PreHook] = (),
        post_hooks: Sequence[PostHook] = (),
        metrics_sink: Optional[MetricsSink] = None,
        tracer: Optional[Tracer] = None,
    ) -> None:
        super().__init__(app)
        self.settings = settings
        self.pre_hooks = list(pre_hooks)
        self.post_hooks = list(post_hooks)
        self.metrics_sink = metrics_sink or NullMetricsSink()
        self.tracer = tracer or NullTracer()

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        for hook in self.pre_hooks:
            try:
                hook(request)
            except Exception:  # pylint: disable=broad-except
                logger.debug("Pre-request hook %r failed", hook, exc_info=True)

        response: Optional[Response] = None
        started = time.perf_counter()
        try:
            span_attributes = {"http.method": request.method, "http.target": request.url.path}
            with self.tracer.span(f"{request.method} {request.url.path}", span_attributes):
                response = await call_next(request)
        except Exception as error:  # pylint: disable=broad-except
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            internal = InternalError.from_exception(error, expose_details=not self.settings.is_production)
            response = internal.to_envelope().render()
        finally:
            if response is not None:
                for post_hook in self.post_hooks:
                    post_hook(request, response)

        if not self.settings.is_test:
            self._observe_duration(request, response, time.perf_counter() - started)
        return response

    def _observe_duration(self, request: Request, response: Response, elapsed: float) -> None:
        if not self.metrics_sink.enabled:
            return
        labels = {"method": request.method, "path": route_label(request), "status": str(response.status_code)}
        try:
            self.metrics_sink.observe_histogram(REQUEST_DURATION_SECONDS, labels, max(0.0, elapsed))
        except Exception:  # pylint: disable=broad-except
            logger.debug("Metrics sink rejected %s", REQUEST_DURATION_SECONDS, exc_info=True)
