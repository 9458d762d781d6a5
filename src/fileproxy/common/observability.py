"""Structured logging and tracing for the file proxy."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from structlog.contextvars import bound_contextvars

from .settings import FileProxySettings

SERVICE_NAME = "fileproxy"

# Probes and scrapes would otherwise dominate the trace volume.
UNTRACED_PATHS = "healthz,metrics"

_tracer_provider: Optional[TracerProvider] = None


def _log_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if level:
        numeric = logging.getLevelName(level.strip().upper())
        if isinstance(numeric, int):
            return numeric
    return logging.INFO


def _static_fields(service_name: str):
    def processor(logger, method_name, event_dict):
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def _trace_ids(logger, method_name, event_dict):
    """Stamp the active span's ids so a log line can be found from its trace."""
    context = trace.get_current_span().get_span_context()
    if context.is_valid:
        event_dict.setdefault("trace_id", format(context.trace_id, "032x"))
        event_dict.setdefault("span_id", format(context.span_id, "016x"))
    return event_dict


def configure_logging(level: str | int | None = None, service_name: str = SERVICE_NAME) -> None:
    """Render every structlog event as one JSON line on the root stdlib logger."""
    numeric_level = _log_level(level)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=numeric_level, format="%(message)s")
    root.setLevel(numeric_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _static_fields(service_name),
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _trace_ids,
            structlog.processors.dict_tracebacks,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


@contextmanager
def registration_context(registration_id: str) -> Iterator[None]:
    """Attach ``registration_id`` to every log line emitted inside the block."""
    with bound_contextvars(registration_id=registration_id):
        yield


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """Split ``key=value`` pairs separated by commas, skipping malformed entries."""
    pairs = (item.partition("=") for item in (raw or "").split(","))
    return {key.strip(): value.strip() for key, sep, value in pairs if sep and key.strip() and value.strip()}


def configure_tracing(settings: FileProxySettings, service_name: str = SERVICE_NAME) -> TracerProvider:
    """Install the process tracer provider on first call and return it afterwards.

    Without an OTLP endpoint spans go to an in-memory exporter, which keeps
    local runs and tests free of network export.
    """
    global _tracer_provider
    if _tracer_provider is not None:
        return _tracer_provider

    current = trace.get_tracer_provider()
    if isinstance(current, TracerProvider):
        _tracer_provider = current
        return current

    ratio = min(1.0, max(0.0, settings.otel_sampler_ratio))
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name}),
        sampler=ParentBased(TraceIdRatioBased(ratio)),
    )
    if settings.otel_exporter_endpoint:
        exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_endpoint,
            headers=parse_otlp_headers(settings.otel_exporter_headers),
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        provider.add_span_processor(SimpleSpanProcessor(InMemorySpanExporter()))

    trace.set_tracer_provider(provider)
    HTTPXClientInstrumentor().instrument(tracer_provider=provider)
    _tracer_provider = provider
    return provider


def instrument_app(app: FastAPI, provider: TracerProvider) -> None:
    """Wrap ``app`` in exactly one OpenTelemetry server middleware."""
    if getattr(app, "_is_instrumented_by_opentelemetry", False):
        return
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider, excluded_urls=UNTRACED_PATHS)
