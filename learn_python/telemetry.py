"""Optional metrics and tracing integrations behind narrow interfaces.

Both integrations are chosen once at startup. The null implementations are
the defaults; they keep the request pipeline identical when nothing is
configured.
"""
from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional, Protocol

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

from .config import Settings

logger = logging.getLogger(__name__)

REQUESTS_TOTAL = "http_requests_total"
REQUEST_DURATION_SECONDS = "http_request_duration_seconds"

_DOCUMENTATION = {
    REQUESTS_TOTAL: "Total HTTP requests",
    REQUEST_DURATION_SECONDS: "HTTP request duration (s)",
}


class MetricsSink(Protocol):
    enabled: bool
    content_type: str

    def increment_counter(self, name: str, labels: Mapping[str, str]) -> None:
        ...

    def observe_histogram(self, name: str, labels: Mapping[str, str], value: float) -> None:
        ...

    def render_text(self) -> str:
        ...


class Tracer(Protocol):
    def span(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> Any:
        ...


class NullMetricsSink:
    enabled = False
    content_type = "text/plain; charset=utf-8"

    def increment_counter(self, name: str, labels: Mapping[str, str]) -> None:
        return None

    def observe_histogram(self, name: str, labels: Mapping[str, str], value: float) -> None:
        return None

    def render_text(self) -> str:
        return ""


class PrometheusMetricsSink:
    """Prometheus-backed sink with a private registry.

    Collectors are created on first use. Their label names come from the first
    label set seen for that metric name.
    """

    enabled = True
    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._counters: Dict[str, Counter] = {}
        self._histograms: Dict[str, Histogram] = {}
        self._lock = threading.Lock()

    def increment_counter(self, name: str, labels: Mapping[str, str]) -> None:
        with self._lock:
            counter = self._counters.get(name)
            if counter is None:
                counter = Counter(name, _DOCUMENTATION.get(name, name), sorted(labels), registry=self.registry)
                self._counters[name] = counter
        counter.labels(**labels).inc()

    def observe_histogram(self, name: str, labels: Mapping[str, str], value: float) -> None:
        with self._lock:
            histogram = self._histograms.get(name)
            if histogram is None:
                histogram = Histogram(name, _DOCUMENTATION.get(name, name), sorted(labels), registry=self.registry)
                self._histograms[name] = histogram
        histogram.labels(**labels).observe(value)

    def render_text(self) -> str:
        return generate_latest(self.registry).decode("utf-8")


class NullTracer:
    @contextmanager
    def span(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> Iterator[None]:
        yield


class OpenTelemetryTracer:
    """Fire-and-forget spans; a failing tracer never reaches the request."""

    def __init__(self, tracer: Any) -> None:
        self._tracer = tracer

    @contextmanager
    def span(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> Iterator[None]:
        stack = ExitStack()
        active_span = None
        try:
            active_span = stack.enter_context(
                self._tracer.start_as_current_span(name, attributes=dict(attributes or {}))
            )
        except Exception:  # pylint: disable=broad-except
            logger.debug("Could not start span %s", name, exc_info=True)

        try:
            yield
        except Exception as error:
            self._record_error(active_span, error)
            raise
        finally:
            try:
                stack.close()
            except Exception:  # pylint: disable=broad-except
                logger.debug("Could not end span %s", name, exc_info=True)

    @staticmethod
    def _record_error(active_span: Any, error: Exception) -> None:
        if active_span is None:
            return
        try:
            active_span.record_exception(error)
            active_span.set_status(Status(StatusCode.ERROR, str(error)))
        except Exception:  # pylint: disable=broad-except
            logger.debug("Could not record error on span", exc_info=True)


def configure_metrics_sink(settings: Settings) -> MetricsSink:
    if not settings.metrics_enabled:
        logger.info("Prometheus metrics disabled; /metrics answers 204")
        return NullMetricsSink()
    logger.info("Prometheus metrics enabled")
    return PrometheusMetricsSink()


def configure_tracer(settings: Settings) -> Tracer:
    """Install an OTLP span exporter when an endpoint is configured.

    The exporter reads ``OTEL_EXPORTER_OTLP_*`` variables itself.
    """
    if not settings.otel_endpoint:
        return NullTracer()
    try:
        provider = TracerProvider(resource=Resource.create({"service.name": settings.app_name}))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
        trace.set_tracer_provider(provider)
        tracer = trace.get_tracer(settings.app_name)
    except Exception as exc:  # pylint: disable=broad-except
        logger.info("OpenTelemetry init error: %s", exc)
        return NullTracer()
    logger.info("OpenTelemetry tracing configured for %s", settings.otel_endpoint)
    return OpenTelemetryTracer(tracer)
