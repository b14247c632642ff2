# ─────────────────────────────────────────────────────────────────────────────
# Prometheus Metrics Endpoint — text exposition format
# ─────────────────────────────────────────────────────────────────────────────
# GET /metrics/prometheus → text/plain Prometheus format
# Outcome counters and the latency histogram live on DispatchMetrics; live
# queue state is sampled into gauges here on every scrape.
# ─────────────────────────────────────────────────────────────────────────────

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CollectorRegistry, Gauge, generate_latest

from dispatcher.broker.redis_queue import RedisJobQueue
from dispatcher.dependencies import get_metrics, get_model_registry
from dispatcher.exceptions import BackendUnavailableError
from dispatcher.registry import ModelRegistry
from dispatcher.services.metrics import DispatchMetrics

logger = structlog.get_logger(__name__)

router = APIRouter()

# ── Prometheus metrics (custom registry to avoid default process metrics) ─────

_registry = CollectorRegistry()

_queue_depth = Gauge(
    "dispatch_queue_depth",
    "Active + delayed + waiting jobs per model queue (-1 if the broker is unreachable)",
    ["model"],
    registry=_registry,
)

_waiters = Gauge(
    "dispatch_pending_waiters",
    "Requests currently blocked waiting for a worker result",
    ["model"],
    registry=_registry,
)


async def _sync_queue_state(model_registry: ModelRegistry) -> None:
    """Sample live queue depth and waiter counts into the gauges."""
    for route in model_registry.routes():
        name = route.model.value
        try:
            _queue_depth.labels(model=name).set(await route.queue.depth())
        except BackendUnavailableError as e:
            logger.warning("prometheus_depth_unavailable", model=name, error=e.message)
            _queue_depth.labels(model=name).set(-1)
        if isinstance(route.queue, RedisJobQueue):
            _waiters.labels(model=name).set(route.queue.listener.pending)


@router.get("/metrics/prometheus")
async def prometheus_metrics(
    metrics: DispatchMetrics = Depends(get_metrics),
    model_registry: ModelRegistry = Depends(get_model_registry),
) -> Response:
    """Prometheus text exposition format metrics endpoint."""
    await _sync_queue_state(model_registry)
    return Response(
        content=generate_latest(metrics.prometheus) + generate_latest(_registry),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
