"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics for feeds, engagement and notification fan-out

Tracing is initialised once at startup; the metric objects are module-level
and shared by the core services.
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
from sqlalchemy.ext.asyncio import AsyncEngine

from needledrop.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
FEED_LATENCY = Histogram(
    "feed_latency_seconds",
    "Latency of feed composition",
    ["variant"],  # 'home' | 'community' | 'tagged' | 'activity' | 'popular_reviews'
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
)

ENGAGEMENT_EVENTS_TOTAL = Counter(
    "engagement_events_total",
    "Committed ledger operations",
    ["action", "target_type"],  # action: upvote | remove_upvote | rate | remove_rating | comment
)

ENGAGEMENT_CONFLICTS_TOTAL = Counter(
    "engagement_conflicts_total",
    "Duplicate upvote/rating inserts rejected by the unique constraint",
    ["target_type"],
)

NOTIFICATIONS_CREATED_TOTAL = Counter(
    "notifications_created_total",
    "Notification rows written",
    ["type"],
)

NOTIFICATION_FAILURES_TOTAL = Counter(
    "notification_failures_total",
    "Best-effort notification writes that failed and were discarded",
)

POPULAR_REVIEWS_CACHE_TOTAL = Counter(
    "popular_reviews_cache_total",
    "Popular-review ranking cache lookups",
    ["result"],  # 'hit' | 'miss' | 'error'
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing() -> None:
    """Install the global TracerProvider exporting to the OTLP collector."""
    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.service_name,
                "service.version": "1.0.0",
                "deployment.environment": settings.environment,
            }
        )
    )
    # The gRPC exporter connects lazily; a dead collector only costs dropped spans
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
        )
    )
    trace.set_tracer_provider(provider)
    RedisInstrumentor().instrument()
    logger.info("OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint)


def instrument_engine(engine: AsyncEngine) -> None:
    """Emit a span per SQL statement issued through ``engine``."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def instrument_app(app) -> None:  # noqa: ANN001
    """Add FastAPI request spans; call once the routers are registered."""
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")
