# Core dispatch flow: validate model → admit → merge → enqueue → wait.
# Every request ends in exactly one of completed / failed / timed out /
# rejected. Nothing is retried here; a timed-out job is left in the broker.


import time

import structlog
from opentelemetry import trace

from dispatcher.admission import AdmissionController, Decision
from dispatcher.config import Settings
from dispatcher.exceptions import (
    DispatchError,
    JobFailedError,
    JobTimeoutError,
    QueueOverloadedError,
    UnknownModelError,
)
from dispatcher.merge import merge_parameters
from dispatcher.registry import ModelRegistry
from dispatcher.schemas import GenerateRequest, GenerateResponse
from dispatcher.services.metrics import DispatchMetrics, Outcome

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class DispatchOrchestrator:
    """Routes a generation request to its model queue and waits for the worker."""

    def __init__(
        self,
        registry: ModelRegistry,
        settings: Settings,
        metrics: DispatchMetrics | None = None,
        admission: AdmissionController | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._metrics = metrics
        self._admission = admission or AdmissionController(registry, settings.queue_limit)

    async def queue_depth(self, model: str) -> int:
        """Current backlog of ``model``. Unknown models raise UnknownModelError."""
        route = self._registry.lookup(model)
        if route is None:
            raise UnknownModelError(ModelRegistry.normalize(model))
        return await route.queue.depth()

    async def generate(
        self, model: str, request: GenerateRequest | None = None
    ) -> GenerateResponse:
        """Full dispatch for one request."""
        name = ModelRegistry.normalize(model)
        with tracer.start_as_current_span("dispatch") as span:
            span.set_attribute("model", name)
            try:
                return await self._dispatch(name, request or GenerateRequest(), span)
            except QueueOverloadedError:
                self._record(name, Outcome.rejected_overloaded)
                raise
            except UnknownModelError:
                # Caller-chosen names stay out of the per-model table.
                self._record("<unknown>", Outcome.rejected_unknown)
                raise
            except JobTimeoutError:
                self._record(name, Outcome.timed_out)
                raise
            except Exception:
                self._record(name, Outcome.failed)
                raise

    async def _dispatch(
        self, name: str, request: GenerateRequest, span: trace.Span
    ) -> GenerateResponse:
        start = time.perf_counter()

        route = self._registry.lookup(name)
        if route is None:
            raise UnknownModelError(name)

        with tracer.start_as_current_span("admission"):
            admission = await self._admission.admit(name)
        span.set_attribute("queue_depth", admission.depth or 0)
        if admission.decision is Decision.overloaded:
            raise QueueOverloadedError(name, admission.depth or 0, self._admission.ceiling)
        if admission.decision is Decision.unknown_model:
            raise UnknownModelError(name)

        payload = merge_parameters(route.defaults, request)

        with tracer.start_as_current_span("enqueue"):
            handle = await route.queue.enqueue(
                payload,
                delay_seconds=self._settings.queue_delay_seconds,
                retention_limit=self._settings.queue_limit,
            )
        span.set_attribute("job_id", handle.job_id)
        logger.info(
            "job_enqueued",
            model=name,
            job_id=handle.job_id,
            depth=admission.depth,
            seed=payload.seed,
        )

        try:
            with tracer.start_as_current_span("wait_until_finished"):
                result = await route.queue.wait_until_finished(
                    handle, timeout_seconds=self._settings.queue_timeout_seconds
                )
        except DispatchError:
            raise
        except Exception as e:
            raise JobFailedError(handle.job_id, str(e)) from e

        elapsed = int((time.perf_counter() - start) * 1000)
        span.set_attribute("latency_ms", elapsed)
        logger.info("job_completed", model=name, job_id=handle.job_id, time_ms=elapsed)
        self._record(name, Outcome.completed, elapsed)

        return GenerateResponse(
            base64=result.base64,
            positive=request.prompt,
            negative=request.negative_prompt,
            cfg_scale=payload.cfg_scale,
            denoising_strength=payload.denoising_strength,
            model=name,
            seed=result.seed,
        )

    def _record(self, model: str, outcome: Outcome, latency_ms: float | None = None) -> None:
        if self._metrics:
            self._metrics.record(model, outcome, latency_ms)
