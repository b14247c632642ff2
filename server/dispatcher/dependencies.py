# ─────────────────────────────────────────────────────────────────────────────
# Dependency Injection — FastAPI Depends() providers
# ─────────────────────────────────────────────────────────────────────────────
# State flows: lifespan creates → app.state stores → Depends() injects.
# The broker pool is never reached through a module global.
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import Request

from dispatcher.broker.connection import BrokerContext
from dispatcher.registry import ModelRegistry
from dispatcher.services.dispatch import DispatchOrchestrator
from dispatcher.services.metrics import DispatchMetrics


def get_broker(request: Request) -> BrokerContext:
    return request.app.state.broker  # type: ignore[no-any-return]


def get_model_registry(request: Request) -> ModelRegistry:
    return request.app.state.model_registry  # type: ignore[no-any-return]


def get_metrics(request: Request) -> DispatchMetrics:
    return request.app.state.metrics  # type: ignore[no-any-return]


def get_orchestrator(request: Request) -> DispatchOrchestrator:
    """Inject DispatchOrchestrator into endpoints via Depends()."""
    return request.app.state.orchestrator  # type: ignore[no-any-return]
