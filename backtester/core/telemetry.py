import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from backtester.core.config import settings

logger = logging.getLogger(__name__)


def setup_telemetry(service_name: str = "", endpoint: str = "") -> bool:
    """
    Sets up OpenTelemetry tracing for backtest runs.

    Spans from the engine, metrics and Monte Carlo layers are exported over
    OTLP/HTTP. Without an endpoint the global no-op tracer stays in place.
    """
    endpoint = endpoint or settings.OTEL_EXPORTER_OTLP_ENDPOINT
    service_name = service_name or settings.OTEL_SERVICE_NAME

    if not endpoint:
        logger.info("Telemetry: OTLP endpoint not set. Skipping setup.")
        return False

    logger.info(f"Telemetry: Initializing for {service_name} at {endpoint}")

    resource = Resource(attributes={SERVICE_NAME: service_name})

    # --- TRACING ---
    trace_exporter = OTLPSpanExporter(endpoint=f"{endpoint.rstrip('/')}/v1/traces")
    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(BatchSpanProcessor(trace_exporter))
    trace.set_tracer_provider(tracer_provider)

    logger.info("Telemetry: OTLP setup complete (Trace)")
    return True
