# FastAPI application factory with lifespan management.
# Entrypoint: uvicorn dispatcher.main:create_app --factory --host 0.0.0.0 --port 8080
#         or: python -m dispatcher

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dispatcher.broker.connection import BrokerContext
from dispatcher.broker.redis_queue import RedisJobQueue
from dispatcher.config import Settings, get_settings
from dispatcher.exceptions import register_exception_handlers
from dispatcher.logging_config import configure_logging
from dispatcher.middleware import RequestContextMiddleware
from dispatcher.registry import ModelClass, ModelRegistry, build_defaults
from dispatcher.routes import generate, health, queue
from dispatcher.routes import prometheus as prometheus_routes
from dispatcher.services.dispatch import DispatchOrchestrator
from dispatcher.services.metrics import DispatchMetrics

logger = structlog.get_logger(__name__)


if TYPE_CHECKING:
    from opentelemetry.sdk.trace import TracerProvider


def _configure_otel(exporter_type: str) -> "TracerProvider | None":
    """Configure OpenTelemetry tracing. Only the console exporter is bundled."""
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

    if exporter_type != "console":
        logger.warning("unknown_otel_exporter", exporter=exporter_type)
        return None

    provider = TracerProvider()
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    from opentelemetry import trace

    trace.set_tracer_provider(provider)
    logger.info("otel_configured", exporter=exporter_type)
    return provider


def build_queues(broker: BrokerContext, settings: Settings) -> dict[ModelClass, RedisJobQueue]:
    """One Redis queue (with its completion listener) per model, on a shared pool."""
    return {
        model: RedisJobQueue(
            broker,
            model.value,
            prefix=settings.queue_prefix,
            retry_seconds=settings.listener_retry_seconds,
        )
        for model in ModelClass
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the broker pool and start listeners; tear both down on shutdown."""
    import os

    settings = get_settings()

    otel_provider = None
    otel_exporter = os.environ.get("OTEL_EXPORTER", "")
    if otel_exporter:
        otel_provider = _configure_otel(otel_exporter)

    broker = BrokerContext(settings)
    await broker.connect()
    if not await broker.ping():
        logger.warning(
            "broker_unreachable_at_startup",
            host=settings.redis_host,
            port=settings.redis_port,
            hint="Requests will fail with 500 until Redis is reachable.",
        )

    queues = build_queues(broker, settings)
    registry = ModelRegistry(build_defaults(settings.default_steps), queues)
    metrics = DispatchMetrics()
    orchestrator = DispatchOrchestrator(registry, settings, metrics=metrics)

    for q in queues.values():
        q.listener.start()

    app.state.settings = settings
    app.state.broker = broker
    app.state.model_registry = registry
    app.state.metrics = metrics
    app.state.orchestrator = orchestrator

    logger.info(
        "dispatcher_started",
        models=registry.names,
        queue_limit=settings.queue_limit,
        delay_s=settings.queue_delay_seconds,
        timeout_s=settings.queue_timeout_seconds,
    )

    yield

    for q in queues.values():
        await q.listener.stop()
    await broker.close()

    if otel_provider is not None:
        otel_provider.shutdown()


def _parse_origins(allowed_origins: str) -> list[str]:
    """Parse comma-separated CORS origins. Empty string → deny all."""
    if not allowed_origins.strip():
        logger.warning(
            "cors_no_origins_configured",
            hint="Set ALLOWED_ORIGINS env var. Cross-origin requests will be rejected.",
        )
        return []
    return [origin.strip() for origin in allowed_origins.split(",") if origin.strip()]


def create_app() -> FastAPI:
    """Application factory. Invoked by: uvicorn dispatcher.main:create_app --factory"""
    settings = get_settings()
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)

    app = FastAPI(
        title="Generation Dispatcher",
        description="Admission-controlled job dispatch to per-model generation queues",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware order (Starlette applies in reverse): CORS → RequestContext
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_parse_origins(settings.allowed_origins),
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(queue.router, tags=["queue"])
    app.include_router(generate.router, tags=["generate"])
    app.include_router(prometheus_routes.router, tags=["prometheus"])

    return app
