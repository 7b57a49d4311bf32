from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from app.context import get_correlation_id
from app.core.config import Settings


SERVICE_NAME = "intake-api"
SERVICE_VERSION = "1.0.0"

_provider: TracerProvider | None = None
_exporters_attached = False


def _tracer_provider() -> TracerProvider:
    # OpenTelemetry accepts a single global provider per process
    global _provider

    if _provider is None:
        _provider = TracerProvider(
            resource=Resource.create({"service.name": SERVICE_NAME, "service.version": SERVICE_VERSION})
        )
        trace.set_tracer_provider(_provider)
    return _provider


def configure_tracing(settings: Settings) -> TracerProvider | None:
    """Install the provider and the exporters named in settings; a no-op unless ``OTEL_ENABLED``."""
    global _exporters_attached

    if not settings.otel_enabled:
        return None

    provider = _tracer_provider()
    if _exporters_attached:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint))
        )
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_attached = True
    return provider


def attach_memory_exporter() -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _tracer_provider().add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


@contextmanager
def traced(name: str, **attributes: Any) -> Iterator[Any]:
    with trace.get_tracer("app").start_as_current_span(name) as span:
        correlation_id = get_correlation_id()
        if correlation_id:
            span.set_attribute("correlation_id", correlation_id)
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        yield span
