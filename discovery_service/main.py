"""
Content Discovery Service — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Initialise DB connection pool (TiDB) and create tables if not present
  3. Connect to Redis (cache + experiment tracking)
  4. Build the experiment registry from config and record start dates
  5. Wire repositories, cache and the discovery orchestrator
  6. Register and start the trending / popularity recomputation jobs
  7. Expose Prometheus /metrics endpoint

Shutdown stops the scheduler, flushes pending exposure writes and closes
Redis and the DB pool.
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from discovery_service.config import settings
from discovery_service.database import AsyncSessionLocal, dispose_db, init_db
from discovery_service.telemetry import setup_tracing, instrument_app
from discovery_service.clients.redis_client import close_redis, get_redis, init_redis
from discovery_service.routers import discovery
from discovery_service.scheduler import DiscoveryScheduler
from discovery_service.services.cache import RecommendationCache
from discovery_service.services.discovery import (
    POPULARITY_JOB,
    TRENDING_JOB,
    CacheTTLs,
    ContentDiscoveryService,
)
from discovery_service.services.experiments import ExperimentRegistry, ExperimentService
from discovery_service.sql_repositories import (
    SqlConnectionRepository,
    SqlContentRepository,
    SqlInteractionRepository,
    SqlUserRepository,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


def build_discovery_service(experiments: ExperimentService) -> ContentDiscoveryService:
    return ContentDiscoveryService(
        content=SqlContentRepository(AsyncSessionLocal),
        interactions=SqlInteractionRepository(AsyncSessionLocal),
        connections=SqlConnectionRepository(AsyncSessionLocal),
        users=SqlUserRepository(AsyncSessionLocal),
        cache=RecommendationCache(get_redis, key_prefix=settings.redis_key_prefix),
        experiments=experiments,
        ttls=CacheTTLs(
            personalized=settings.personalized_ttl,
            trending=settings.trending_ttl,
            network_trending=settings.network_trending_ttl,
            people_suggestions=settings.people_suggestions_ttl,
        ),
        batch_size=settings.popularity_batch_size,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting Content Discovery Service (env=%s)", settings.environment)

    await init_db()
    await init_redis()

    experiments = ExperimentService(
        ExperimentRegistry.from_config(settings.ab_testing_experiments),
        get_redis,
        key_prefix=settings.redis_key_prefix,
        log_size=settings.experiment_log_size,
    )
    await experiments.mark_started()

    service = build_discovery_service(experiments)
    scheduler = DiscoveryScheduler()
    if settings.jobs_enabled:
        scheduler.register(
            TRENDING_JOB, service.update_trending_content, settings.trending_update_interval
        )
        scheduler.register(
            POPULARITY_JOB,
            service.update_content_popularity_scores,
            settings.popularity_update_interval,
        )
        scheduler.start()
    else:
        logger.info("Scheduled jobs disabled by configuration")

    app.state.experiments = experiments
    app.state.discovery = service
    app.state.scheduler = scheduler

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    scheduler.shutdown()
    await experiments.wait_for_pending()
    await close_redis()
    await dispose_db()


app = FastAPI(
    title="Content Discovery Service",
    description=(
        "Personalized recommendations, trending content, people suggestions "
        "and social search re-ranking with A/B-tested algorithms."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(discovery.router, prefix="/discovery", tags=["Discovery"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
