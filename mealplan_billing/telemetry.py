import logging
import os

logger = logging.getLogger(__name__)


def setup_otel(app) -> None:
    enabled = os.getenv("OTEL_ENABLED", "false").lower() in {"1", "true", "yes", "on"}
    if not enabled:
        return
    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
            OTLPSpanExporter,
        )
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.instrumentation.requests import RequestsInstrumentor
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.exception("OpenTelemetry dependencies not available.")
        return

    service_name = os.getenv("OTEL_SERVICE_NAME", "mealplan_billing")
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(provider)

    exporter = OTLPSpanExporter(endpoint=endpoint) if endpoint else OTLPSpanExporter()
    provider.add_span_processor(BatchSpanProcessor(exporter))

    FastAPIInstrumentor.instrument_app(app)
    # Stripe calls go through the SDK's requests-based HTTP client.
    RequestsInstrumentor().instrument()
