"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics: discovery latency, cache outcomes, fallbacks,
    experiment exposures, scheduled job runs

Both are initialised once at startup and injected into FastAPI via middleware.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import Counter, Histogram

from discovery_service.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
DISCOVERY_LATENCY = Histogram(
    "discovery_latency_seconds",
    "End-to-end latency of discovery list computation",
    ["endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

CACHE_LOOKUPS_TOTAL = Counter(
    "discovery_cache_lookups_total",
    "Recommendation cache lookups",
    ["list_type", "outcome"],  # outcome: 'hit' | 'miss' | 'error'
)

FALLBACKS_TOTAL = Counter(
    "discovery_fallbacks_total",
    "Times a strategy gave up and the next one in the fallback chain was used",
    ["strategy", "reason"],  # reason: 'empty' | 'error'
)

EXPERIMENT_EXPOSURES_TOTAL = Counter(
    "experiment_exposures_total",
    "Variant decisions handed out per experiment",
    ["experiment", "variant"],
)

JOB_RUNS_TOTAL = Counter(
    "discovery_job_runs_total",
    "Scheduled recomputation runs",
    ["job", "status"],  # status: 'ok' | 'error'
)

JOB_ITEMS_UPDATED_TOTAL = Counter(
    "discovery_job_items_updated_total",
    "Content items whose score was rewritten by a scheduled job",
    ["job"],
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing() -> None:
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    if not settings.tracing_enabled:
        logger.info("OTel tracing disabled by configuration")
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "deployment.environment": settings.environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(
            "OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint
        )
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)

    # Auto-instrument the store clients so their spans appear in traces
    RedisInstrumentor().instrument()
    SQLAlchemyInstrumentor().instrument()


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app)
