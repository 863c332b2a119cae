"""
OpenTelemetry setup for the ingestion service and worker.

Tracer and meter come from the opentelemetry API, which hands out no-op
implementations until setup_telemetry installs real providers. With
OTEL_ENABLED off nothing is exported.
"""

from typing import Any

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .config import settings

logger = structlog.get_logger()

INSTRUMENTATION_NAME = "docingest"

_tracer: Any = None
_meter: Any = None


def setup_telemetry(service_name: str, service_version: str = "1.0.0"):
    """
    Set up OpenTelemetry tracing and metrics.

    Args:
        service_name: Name of the process (e.g. 'docingest-api', 'docingest-worker')
        service_version: Version of the service
    """
    global _tracer, _meter

    if not settings.OTEL_ENABLED:
        logger.info("OpenTelemetry is disabled")
        return

    resource = Resource.create(
        {
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
            "deployment.environment": settings.ENVIRONMENT,
        }
    )

    try:
        tracer_provider = TracerProvider(resource=resource)
        tracer_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True))
        )
        trace.set_tracer_provider(tracer_provider)
        _tracer = trace.get_tracer(service_name, service_version)
        logger.info("Tracing enabled", endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT)
    except Exception as e:
        logger.warning("Failed to set up tracing", error=str(e))

    try:
        reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True),
            export_interval_millis=60000,
        )
        metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))
        _meter = metrics.get_meter(service_name, service_version)
        logger.info("Metrics enabled")
    except Exception as e:
        logger.warning("Failed to set up metrics", error=str(e))

    try:
        RedisInstrumentor().instrument()
    except Exception as e:
        logger.warning("Failed to instrument redis", error=str(e))


def instrument_fastapi(app):
    """Instrument a FastAPI application."""
    if not settings.OTEL_ENABLED:
        return
    try:
        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI instrumented")
    except Exception as e:
        logger.warning("Failed to instrument FastAPI", error=str(e))


def get_tracer():
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer(INSTRUMENTATION_NAME)
    return _tracer


def get_meter():
    global _meter
    if _meter is None:
        _meter = metrics.get_meter(INSTRUMENTATION_NAME)
    return _meter


class IngestionMetrics:
    """Ingestion pipeline metrics."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        meter = get_meter()

        self.documents_processed = meter.create_counter(
            name="ingestion.documents_processed",
            description="Documents that finished ingestion, by outcome",
            unit="1",
        )
        self.chunks_created = meter.create_counter(
            name="ingestion.chunks_created",
            description="Vectors written to the store",
            unit="1",
        )
        self.extraction_failures = meter.create_counter(
            name="ingestion.extraction_failures",
            description="Jobs failed, by error code",
            unit="1",
        )
        self.embedding_fallbacks = meter.create_counter(
            name="ingestion.embedding_fallbacks",
            description="Batched embedding calls that fell back to one-by-one",
            unit="1",
        )
        self.processing_duration = meter.create_histogram(
            name="ingestion.processing_duration",
            description="Time spent per pipeline stage (stage=total for the whole job)",
            unit="ms",
        )

        self._initialized = True

    def record_document_processed(self, outcome: str):
        self.documents_processed.add(1, {"outcome": outcome})

    def record_chunks_created(self, count: int, collection: str):
        self.chunks_created.add(count, {"collection": collection})

    def record_extraction_failure(self, error_type: str):
        self.extraction_failures.add(1, {"error_type": error_type})

    def record_embedding_fallback(self, model: str):
        self.embedding_fallbacks.add(1, {"model": model})

    def record_processing_time(self, duration_ms: float, stage: str):
        """Record processing time for a stage."""
        self.processing_duration.record(duration_ms, {"stage": stage})
