"""
Distributed Tracing with OpenTelemetry.

Engine operations (drop purchase, barter, weekly finalize) open an
"economy.*" span; FastAPI and SQLAlchemy spans nest underneath.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from qafala.config import settings
from qafala.exceptions import EconomyError

SPAN_PREFIX = "economy."


def setup_tracing() -> None:
    """Install the OTLP-exporting tracer provider when tracing is enabled."""
    if not settings.tracing_enabled:
        return

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.service_name,
                "service.version": settings.api_version,
                "economy.transactional": settings.use_transactions,
            }
        ),
        # Follow the gateway's sampling decision when it sent one
        sampler=ParentBased(TraceIdRatioBased(settings.trace_sample_rate)),
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any) -> None:
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="metrics")


def instrument_sqlalchemy(engine: Any) -> None:
    if settings.tracing_enabled:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer(name: str) -> Tracer:
    return trace.get_tracer(name)


def _attribute_value(value: Any) -> str | int | float | bool:
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def add_span_attributes(span: Span, **attributes: Any) -> None:
    """
    Set attributes, skipping None and stringifying ids.

    Usage:
        add_span_attributes(span, user_id=user_id, qty=qty)
    """
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, _attribute_value(value))


def set_span_error(span: Span, error: BaseException) -> None:
    """Mark span as failed; economy rejections also carry their code."""
    if isinstance(error, EconomyError):
        span.set_attribute("economy.error_code", error.code)
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.record_exception(error)


class trace_operation:
    """
    Span around one engine operation.

    Usage:
        with trace_operation("drop_purchase", user_id=str(user_id)) as span:
            span.set_attribute("qty", 2)
    """

    def __init__(
        self, operation_name: str, tracer: Tracer | None = None, **attributes: Any
    ) -> None:
        self.operation_name = SPAN_PREFIX + operation_name
        self.attributes = attributes
        self.span: Span | None = None
        self._scope: Any = None
        self.tracer = tracer or get_tracer("qafala.operations")

    def __enter__(self) -> Span:
        self.span = self.tracer.start_span(self.operation_name)
        add_span_attributes(self.span, **self.attributes)
        self._scope = trace.use_span(self.span, end_on_exit=False)
        self._scope.__enter__()
        return self.span

    def __exit__(self, exc_type: type, exc_val: BaseException, exc_tb: object) -> None:
        if self._scope is not None:
            self._scope.__exit__(None, None, None)
        if self.span:
            if exc_val:
                set_span_error(self.span, exc_val)
            self.span.end()
