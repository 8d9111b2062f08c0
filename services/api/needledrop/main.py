"""
Needledrop API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Build the DB engine + session factory (TiDB)
  3. Create tables if not present
  4. Connect to Redis (popular-review ranking cache)
  5. Construct the core services and park them on app.state
  6. Expose Prometheus /metrics endpoint
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as aioredis
from fastapi import FastAPI
from prometheus_client import make_asgi_app
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from needledrop.clients.redis_client import ReviewRankCache, connect_redis
from needledrop.config import settings
from needledrop.core.activity import ActivityAggregator
from needledrop.core.content import ContentService
from needledrop.core.feed import FeedComposer
from needledrop.core.ledger import EngagementLedger
from needledrop.core.notifications import NotificationFanout, NotificationInbox
from needledrop.database import build_engine, build_sessionmaker, init_db
from needledrop.errors import NeedledropError, handle_domain_error
from needledrop.routers import comments, communities, feed, notifications, posts, reviews, users
from needledrop.telemetry import instrument_app, instrument_engine, setup_tracing

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Provider first, so spans opened by the core services are exported
if settings.otel_enabled:
    setup_tracing()


def attach_services(
    app: FastAPI,
    sessions: async_sessionmaker[AsyncSession],
    redis: Optional[aioredis.Redis] = None,
) -> None:
    """Construct the core services once and expose them to the routers."""
    fanout = NotificationFanout(sessions, in_transaction=settings.notifications_in_transaction)
    ledger = EngagementLedger(sessions, fanout)

    app.state.sessions = sessions
    app.state.fanout = fanout
    app.state.ledger = ledger
    app.state.feed = FeedComposer(sessions)
    app.state.activity = ActivityAggregator(
        sessions, ReviewRankCache(redis, ttl=settings.popular_reviews_cache_ttl)
    )
    app.state.content = ContentService(sessions, ledger, fanout)
    app.state.inbox = NotificationInbox(sessions)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting Needledrop API (env=%s)", settings.environment)

    engine = build_engine()
    if settings.otel_enabled:
        instrument_engine(engine)
    await init_db(engine)
    redis = await connect_redis()
    attach_services(app, build_sessionmaker(engine), redis)

    logger.info(
        "All services connected. API ready (notifications_in_transaction=%s).",
        settings.notifications_in_transaction,
    )
    yield

    logger.info("Shutting down...")
    await redis.aclose()
    await engine.dispose()


app = FastAPI(
    title="Needledrop API",
    description=(
        "Music-link social feed: follow/community feeds, upvotes, "
        "ratings and reviews with consistent engagement counters."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_exception_handler(NeedledropError, handle_domain_error)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(posts.router, prefix="/posts", tags=["Posts"])
app.include_router(comments.router, prefix="/comments", tags=["Comments"])
app.include_router(communities.router, prefix="/communities", tags=["Communities"])
app.include_router(feed.router, prefix="/feed", tags=["Feed"])
app.include_router(reviews.ratings_router, prefix="/ratings", tags=["Ratings"])
app.include_router(reviews.router, prefix="/reviews", tags=["Reviews"])
app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
# Mounted at /metrics, scraped by Prometheus
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
if settings.otel_enabled:
    instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
