"""OpenTelemetry tracing for the API and webhook processing."""
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from roombook.config import settings
from roombook.database import engine

tracer = trace.get_tracer("roombook.webhooks")


def setup_tracing(app: FastAPI) -> None:
    """
    Export spans over OTLP/HTTP and instrument FastAPI and SQLAlchemy.

    Health probes and the metrics scrape are excluded.

    Args:
        app: FastAPI application instance
    """
    resource = Resource(attributes={SERVICE_NAME: settings.otel_service_name, "deployment.environment": settings.app_env})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{settings.otel_exporter_otlp_endpoint}/v1/traces"))
    )
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


@contextmanager
def webhook_span(event_id: str, event_type: str, family: str, reference: Optional[str]) -> Iterator[trace.Span]:
    """
    Span around the dispatch of one gateway event.

    The gateway event id is set as an attribute so a trace can be joined
    with its ledger row.
    """
    with tracer.start_as_current_span("webhook.dispatch") as span:
        span.set_attribute("webhook.event_id", event_id)
        span.set_attribute("webhook.event_type", event_type)
        span.set_attribute("webhook.family", family)
        if reference:
            span.set_attribute("webhook.reference", reference)
        yield span
