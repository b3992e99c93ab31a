"""
OpenTelemetry tracing for pipeline runs and stages.

Features:
- One span per pipeline run and per stage, named ``pipeline.<op>`` and
  ``stage.<name>``
- Span ids feed the logging trace id, so log lines and spans correlate
- OTLP export only when an endpoint is configured; otherwise spans stay local
"""

import inspect
import functools
from collections.abc import Callable
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import NoOpTracer, Span, Status, StatusCode

from .logging import get_logger, set_trace_id

logger = get_logger(__name__)


class TracingManager:
    """Manages OpenTelemetry tracer setup and span helpers."""

    def __init__(self, service_name: str = "nexusai", service_version: str = "0.1.0"):
        self.service_name = service_name
        self.service_version = service_version
        self.tracer_provider: TracerProvider | None = None
        self.tracer: trace.Tracer = NoOpTracer()
        self._initialized = False

    def initialize(self, otlp_endpoint: str | None = None) -> None:
        if self._initialized:
            return

        resource = Resource.create(
            {"service.name": self.service_name, "service.version": self.service_version}
        )
        self.tracer_provider = TracerProvider(resource=resource)

        if otlp_endpoint:
            exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
            self.tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
            logger.info("OTLP span export enabled", endpoint=otlp_endpoint)

        self.tracer = self.tracer_provider.get_tracer(self.service_name, self.service_version)
        self._initialized = True

    @contextmanager
    def span(self, name: str, attributes: dict[str, Any] | None = None):
        """Start a span, mark it failed on exceptions and end it on exit."""
        with self.tracer.start_as_current_span(name, record_exception=False) as span:
            for key, value in (attributes or {}).items():
                span.set_attribute(key, str(value))

            span_context = span.get_span_context()
            if span_context.is_valid:
                set_trace_id(format(span_context.trace_id, "032x"))

            try:
                yield span
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

    def shutdown(self) -> None:
        if self.tracer_provider:
            self.tracer_provider.shutdown()
        self._initialized = False


_tracing_manager: TracingManager | None = None


def setup_tracing(
    service_name: str = "nexusai",
    service_version: str = "0.1.0",
    otlp_endpoint: str | None = None,
) -> TracingManager:
    """Install and initialize the process-wide tracing manager."""
    global _tracing_manager
    _tracing_manager = TracingManager(service_name, service_version)
    _tracing_manager.initialize(otlp_endpoint)
    return _tracing_manager


def get_tracing_manager() -> TracingManager:
    """Return the configured manager; an uninitialized one uses a no-op tracer."""
    global _tracing_manager
    if _tracing_manager is None:
        _tracing_manager = TracingManager()
    return _tracing_manager


def reset_tracing() -> None:
    global _tracing_manager
    if _tracing_manager is not None:
        _tracing_manager.shutdown()
    _tracing_manager = None


def trace_span(name: str | None = None, attributes: dict[str, Any] | None = None):
    """Decorator wrapping a coroutine function in a span."""

    def decorator(func: Callable) -> Callable:
        span_name = name or f"{func.__module__}.{func.__qualname__}"

        if not inspect.iscoroutinefunction(func):
            raise TypeError("trace_span only decorates async functions")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            with get_tracing_manager().span(span_name, attributes) as span:
                result = await func(*args, **kwargs)
                if hasattr(result, "success"):
                    span.set_attribute("result.success", bool(result.success))
                span.set_status(Status(StatusCode.OK))
                return result

        return wrapper

    return decorator


def add_span_attributes(**attributes):
    current_span: Span = trace.get_current_span()
    if current_span.is_recording():
        for key, value in attributes.items():
            current_span.set_attribute(key, str(value))
