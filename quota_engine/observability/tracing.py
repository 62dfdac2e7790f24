"""
Distributed Tracing with OpenTelemetry.

Traces ledger confirmations and assignment switches across the host service and database.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from quota_engine.config import settings


def setup_tracing() -> None:
    """
    Configure OpenTelemetry tracing with OTLP export.

    Sets up:
    - TracerProvider with service resource
    - OTLP exporter to collector
    """
    if not settings.tracing_enabled:
        return

    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.service_version,
        }
    )

    provider = TracerProvider(resource=resource)
    otlp_exporter = OTLPSpanExporter(
        endpoint=settings.otlp_endpoint,
        insecure=settings.otlp_insecure,
    )
    provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    trace.set_tracer_provider(provider)


def instrument_sqlalchemy(engine: Any) -> None:
    """
    Instrument SQLAlchemy engine for automatic query tracing.

    Must be called for each database engine.
    """
    if not settings.tracing_enabled:
        return

    from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor

    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer(name: str) -> Tracer:
    """Get a tracer instance for manual span creation."""
    return trace.get_tracer(name)


def add_span_attributes(span: Span, **attributes: Any) -> None:
    """Add non-None attributes to a span, stringifying non-primitive values."""
    for key, value in attributes.items():
        if value is not None:
            if isinstance(value, (str, int, float, bool)):
                span.set_attribute(key, value)
            else:
                span.set_attribute(key, str(value))


def set_span_error(span: Span, error: BaseException) -> None:
    """Mark span as error and record exception."""
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.record_exception(error)


class trace_operation:
    """
    Context manager for creating traced operations.

    Usage:
        with trace_operation("confirm_deduction", event_id=event_id) as span:
            # ... perform operation
            span.set_attribute("quantity", 2)
    """

    def __init__(self, operation_name: str, **attributes: Any) -> None:
        self.operation_name = operation_name
        self.attributes = attributes
        self.span: Span | None = None
        self._use_span: Any = None
        self.tracer = get_tracer("quota_engine.operations")

    def __enter__(self) -> Span:
        """Start span and make it current."""
        self.span = self.tracer.start_span(self.operation_name)
        add_span_attributes(self.span, **self.attributes)
        self._use_span = trace.use_span(self.span, end_on_exit=False)
        self._use_span.__enter__()
        return self.span

    def __exit__(self, exc_type: type, exc_val: BaseException | None, exc_tb: object) -> None:
        """End span and record any errors."""
        if self._use_span is not None:
            self._use_span.__exit__(None, None, None)
        if self.span:
            if exc_val:
                set_span_error(self.span, exc_val)
            self.span.end()
