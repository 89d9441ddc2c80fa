"""FastAPI application factory and lifespan management."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from assure.config import settings
from assure.logging_config import configure_logging

# Configure logging at import time
configure_logging(log_level=settings.log_level, json_output=not settings.local_mode)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline: storage, bus, capabilities, job pools and consumers."""
    from assure.db.engine import create_all, create_db_engine, create_session_factory
    from assure.events.bus import InMemoryEventBus, RedisStreamBus
    from assure.events.consumers import PrRequestConsumer, RegulationConsumer, wire_consumers
    from assure.events.webhook_config import webhook_registry
    from assure.events.topics import SPEC_PR_REQUESTED, SPEC_UPDATED
    from assure.llm.anthropic import AnthropicTextGenerator
    from assure.llm.embeddings import OpenAIEmbeddingProvider
    from assure.services.diff_engine import build_applier
    from assure.services.patch_orchestrator import PatchOrchestrator
    from assure.workers.pr_worker import PullRequestWorker
    from assure.workers.queue import JobQueue
    from assure.workers.spec_patch_worker import SpecPatchWorker

    engine = create_db_engine()
    db_url = settings.effective_database_url
    # Auto-create tables for SQLite (local dev, no migrations)
    if "sqlite" in db_url:
        await create_all(engine)
        logger.info("SQLite tables created (local mode)")
    session_factory = create_session_factory(engine)

    if settings.local_mode:
        redis = None
        bus = InMemoryEventBus()
    else:
        import redis.asyncio as aioredis

        redis = aioredis.from_url(settings.redis_url, decode_responses=True)
        bus = RedisStreamBus(redis)

    generator = AnthropicTextGenerator()
    embedder = OpenAIEmbeddingProvider() if settings.embedding_api_key else None
    if embedder is None:
        logger.warning("No embedding API key configured; semantic impact filter disabled")

    orchestrator = PatchOrchestrator(generator, build_applier(settings.diff_apply_mode, generator), bus)
    patch_queue = JobQueue(
        SpecPatchWorker(orchestrator), session_factory, redis, settings.patch_worker_concurrency
    )
    pr_queue = JobQueue(PullRequestWorker(bus), session_factory, redis, settings.pr_worker_concurrency)

    subscribers = webhook_registry.register_urls(
        settings.notification_webhook_urls,
        settings.notification_webhook_secret,
        [SPEC_UPDATED, SPEC_PR_REQUESTED],
    )
    if subscribers:
        logger.info("%d notification webhook(s) registered", subscribers)

    wire_consumers(
        bus,
        RegulationConsumer(session_factory, embedder, patch_queue),
        PrRequestConsumer(session_factory, pr_queue),
    )
    await patch_queue.start()
    await pr_queue.start()
    await bus.start()

    app.state.db_engine = engine
    app.state.db_session_factory = session_factory
    app.state.redis = redis
    app.state.bus = bus

    logger.info(
        "Assure spec patcher started (db=%s, bus=%s, apply=%s)",
        "sqlite" if "sqlite" in db_url else "postgresql",
        type(bus).__name__,
        settings.diff_apply_mode,
    )
    yield

    # Shutdown
    await bus.close()
    await pr_queue.stop()
    await patch_queue.stop()
    await generator.aclose()
    if embedder is not None:
        await embedder.aclose()
    webhook_registry.clear()
    if redis is not None:
        await redis.aclose()
    await engine.dispose()
    logger.info("Assure spec patcher shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Assure Spec Patcher",
        version="0.1.0",
        description="Turns regulation changes into versioned, clause-level patches of technical specifications.",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    from assure.api.middleware.rate_limit import setup_rate_limiter
    from assure.api.middleware.trace_id import TraceIdMiddleware

    setup_rate_limiter(app)
    app.add_middleware(TraceIdMiddleware)

    # Register error handlers
    from assure.errors.handlers import register_exception_handlers
    register_exception_handlers(app)

    # Prometheus metrics (internal endpoint)
    from prometheus_fastapi_instrumentator import Instrumentator
    Instrumentator(
        should_group_status_codes=True,
        should_respect_env_var=False,
        excluded_handlers=["/api/v1/health.*", "/metrics"],
    ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    # Import and mount routers
    from assure.api.router import api_router
    app.include_router(api_router)

    return app


app = create_app()
