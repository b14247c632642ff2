# ─────────────────────────────────────────────────────────────────────────────
# Queue Protocol — runtime_checkable interface for per-model job queues
# ─────────────────────────────────────────────────────────────────────────────
# The orchestrator only talks to this interface. RedisJobQueue is the
# production implementation; tests substitute AsyncMocks.
# ─────────────────────────────────────────────────────────────────────────────

import asyncio
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from dispatcher.schemas import GenerationParameters, JobResult


@dataclass
class JobHandle:
    """Identifies an enqueued job and carries the future its result lands in."""

    queue: str
    job_id: str
    result: "asyncio.Future[JobResult] | None" = field(default=None, repr=False, compare=False)


@runtime_checkable
class JobQueue(Protocol):
    """FIFO work queue for one model plus its completion channel."""

    @property
    def name(self) -> str: ...

    async def depth(self) -> int: ...

    async def enqueue(
        self,
        payload: GenerationParameters,
        delay_seconds: float,
        retention_limit: int,
    ) -> JobHandle: ...

    async def wait_until_finished(self, handle: JobHandle, timeout_seconds: float) -> JobResult: ...
