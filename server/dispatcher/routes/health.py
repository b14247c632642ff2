# ─────────────────────────────────────────────────────────────────────────────
# Health Check Routes — liveness, readiness, and metrics
# ─────────────────────────────────────────────────────────────────────────────
#   /              → Legacy liveness text ("API is Alive").
#   /health        → Liveness probe. No I/O, always 200.
#   /health/ready  → Readiness probe. PINGs the broker; 503 if unreachable.
#   /metrics       → Dispatch outcome counters and latency.
# ─────────────────────────────────────────────────────────────────────────────

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse

from dispatcher.broker.connection import BrokerContext
from dispatcher.dependencies import get_broker, get_metrics, get_model_registry
from dispatcher.registry import ModelRegistry
from dispatcher.schemas import LivenessResponse, ReadinessResponse
from dispatcher.services.metrics import DispatchMetrics

router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "API is Alive"


@router.get("/health", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Liveness probe — is the process alive? No dependencies, no I/O."""
    return LivenessResponse(status="ok")


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness(
    broker: BrokerContext = Depends(get_broker),
    registry: ModelRegistry = Depends(get_model_registry),
) -> JSONResponse:
    """Readiness probe — can this instance reach the queue broker?

    Returns 503 when the broker does not answer PING so the load balancer
    withholds traffic without restarting the process.
    """
    connected = await broker.ping()
    response = ReadinessResponse(
        status="ready" if connected else "not_ready",
        broker_connected=connected,
        models=registry.names,
    )
    return JSONResponse(
        status_code=200 if connected else 503,
        content=response.model_dump(),
    )


@router.get("/metrics")
async def metrics_endpoint(
    metrics: DispatchMetrics = Depends(get_metrics),
) -> dict[str, Any]:
    return metrics.to_dict()
