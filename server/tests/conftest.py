# ─────────────────────────────────────────────────────────────────────────────
# Test Fixtures — shared across all tests
# ─────────────────────────────────────────────────────────────────────────────

import os
from unittest.mock import AsyncMock, MagicMock

import pytest
from doubles import QUEUE_LIMIT, make_queue
from fastapi.testclient import TestClient

from dispatcher.broker.connection import BrokerContext
from dispatcher.config import Settings
from dispatcher.main import create_app
from dispatcher.registry import ModelClass, ModelRegistry, build_defaults
from dispatcher.services.dispatch import DispatchOrchestrator
from dispatcher.services.metrics import DispatchMetrics


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing — no Redis, short timeout."""
    return Settings(
        queue_limit=QUEUE_LIMIT,
        queue_delay_seconds=0,
        queue_timeout_seconds=1,
        default_steps=20,
        allowed_origins="*",
        log_json=False,
        log_level="DEBUG",
    )


@pytest.fixture
def mock_queues() -> dict[ModelClass, MagicMock]:
    return {model: make_queue(model.value) for model in ModelClass}


@pytest.fixture
def registry(test_settings: Settings, mock_queues: dict[ModelClass, MagicMock]) -> ModelRegistry:
    return ModelRegistry(build_defaults(test_settings.default_steps), mock_queues)


@pytest.fixture
def metrics() -> DispatchMetrics:
    return DispatchMetrics()


@pytest.fixture
def orchestrator(
    registry: ModelRegistry, test_settings: Settings, metrics: DispatchMetrics
) -> DispatchOrchestrator:
    return DispatchOrchestrator(registry, test_settings, metrics=metrics)


@pytest.fixture
def mock_broker() -> BrokerContext:
    broker = MagicMock(spec=BrokerContext)
    broker.ping = AsyncMock(return_value=True)
    broker.is_connected = True
    return broker


@pytest.fixture
def client(
    test_settings: Settings,
    registry: ModelRegistry,
    orchestrator: DispatchOrchestrator,
    metrics: DispatchMetrics,
    mock_broker: BrokerContext,
) -> TestClient:
    """FastAPI TestClient with mocked dependencies.

    The lifespan is not entered (no ``with``), so no Redis pool or
    listeners are created; app.state is filled with test doubles instead.
    """
    from dispatcher.config import get_settings

    get_settings.cache_clear()

    env_overrides = {
        "LOG_JSON": "false",
        "LOG_LEVEL": "DEBUG",
        "ALLOWED_ORIGINS": "*",
    }
    for k, v in env_overrides.items():
        os.environ[k] = v

    try:
        app = create_app()
        client = TestClient(app, raise_server_exceptions=False)

        app.state.settings = test_settings
        app.state.broker = mock_broker
        app.state.model_registry = registry
        app.state.metrics = metrics
        app.state.orchestrator = orchestrator

        return client
    finally:
        for k in env_overrides:
            os.environ.pop(k, None)
        get_settings.cache_clear()
