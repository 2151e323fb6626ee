"""OpenTelemetry + Prometheus fallback wiring for threadlog."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from threadlog import config

logger = logging.getLogger("threadlog.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_files_parsed_counter: Any | None = None
_parser_failure_counter: Any | None = None
_live_events_counter: Any | None = None

_prom_enabled = False
_prom_files_parsed_counter: Any | None = None
_prom_parser_failure_counter: Any | None = None
_prom_live_events_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _prom_labels(**labels: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in labels.items()}


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _files_parsed_counter, _parser_failure_counter, _live_events_counter
    global _prom_enabled, _prom_files_parsed_counter, _prom_parser_failure_counter, _prom_live_events_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if config.OTEL_ENABLED:
        try:
            from opentelemetry import metrics, trace
            from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
            from opentelemetry.sdk.metrics import MeterProvider
            from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
            from opentelemetry.sdk.resources import Resource
            from opentelemetry.sdk.trace import TracerProvider
            from opentelemetry.sdk.trace.export import BatchSpanProcessor
        except ImportError as exc:
            logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        else:
            resource = Resource.create(
                {
                    "service.name": config.OTEL_SERVICE_NAME or "threadlog",
                    "service.namespace": "threadlog",
                }
            )
            trace_provider = TracerProvider(resource=resource)
            trace_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
            trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=trace_endpoint or None)))
            trace.set_tracer_provider(trace_provider)

            metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
            metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
            meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
            metrics.set_meter_provider(meter_provider)
            meter = metrics.get_meter("threadlog")

            _files_parsed_counter = meter.create_counter(
                "threadlog_files_parsed_total",
                unit="1",
                description="Session files parsed from the corpus",
            )
            _parser_failure_counter = meter.create_counter(
                "threadlog_parser_failures_total",
                unit="1",
                description="JSONL lines dropped because they failed to parse",
            )
            _live_events_counter = meter.create_counter(
                "threadlog_live_events_total",
                unit="1",
                description="Events emitted on live update streams",
            )

            _trace_provider = trace_provider
            _meter_provider = meter_provider
            _tracer = trace.get_tracer("threadlog")
            _fastapi_instrumentor = FastAPIInstrumentor()
            _enabled = True
            if app:
                _fastapi_instrumentor.instrument_app(app)
            logger.info("OpenTelemetry initialized (endpoint=%s)", config.OTEL_ENDPOINT)
    else:
        logger.info("OpenTelemetry disabled (THREADLOG_OTEL_ENABLED=false)")

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_files_parsed_counter = Counter(
                "threadlog_files_parsed_total",
                "Session files parsed from the corpus",
                ["project"],
            )
            _prom_parser_failure_counter = Counter(
                "threadlog_parser_failures_total",
                "JSONL lines dropped because they failed to parse",
                ["parser", "project"],
            )
            _prom_live_events_counter = Counter(
                "threadlog_live_events_total",
                "Events emitted on live update streams",
                ["type"],
            )
            _prom_enabled = True
            logger.info("Prometheus metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception:
        pass
    try:
        if _meter_provider is not None:
            _meter_provider.shutdown()
    except Exception:
        pass
    try:
        if _trace_provider is not None:
            _trace_provider.shutdown()
    except Exception:
        pass
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_file_parsed(*, project: str) -> None:
    if _enabled and _files_parsed_counter is not None:
        _files_parsed_counter.add(1, {"project": project or "unknown"})
    if _prom_enabled and _prom_files_parsed_counter is not None:
        _prom_files_parsed_counter.labels(**_prom_labels(project=project)).inc()


def record_parser_failure(parser: str, *, project: str, count: int = 1) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = {"parser": parser or "unknown", "project": project or "unknown"}
    if _enabled and _parser_failure_counter is not None:
        _parser_failure_counter.add(safe_count, labels)
    if _prom_enabled and _prom_parser_failure_counter is not None:
        _prom_parser_failure_counter.labels(**_prom_labels(parser=parser, project=project)).inc(safe_count)


def record_live_event(event_type: str) -> None:
    if _enabled and _live_events_counter is not None:
        _live_events_counter.add(1, {"type": event_type or "unknown"})
    if _prom_enabled and _prom_live_events_counter is not None:
        _prom_live_events_counter.labels(**_prom_labels(type=event_type)).inc()
