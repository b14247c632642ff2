# ─────────────────────────────────────────────────────────────────────────────
# Redis Job Queue — per-model FIFO on a BullMQ-style key layout
# ─────────────────────────────────────────────────────────────────────────────
# {prefix}:{queue}:id          INCR counter for job ids
# {prefix}:{queue}:{id}        job hash (name, data, opts, timestamp, delay)
# {prefix}:{queue}:wait        list, LPUSH here, workers take from the right
# {prefix}:{queue}:delayed     zset scored by ready-at (ms)
# {prefix}:{queue}:active      list of jobs held by a worker
# {prefix}:{queue}:completed   zset scored by finish time
# {prefix}:{queue}:failed      zset scored by finish time
# {prefix}:{queue}:events      stream of job lifecycle events
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import asyncio
import json
import time
from typing import TYPE_CHECKING

import structlog
from redis.exceptions import RedisError

from dispatcher.broker.events import CompletionListener, parse_result
from dispatcher.broker.protocol import JobHandle
from dispatcher.exceptions import BackendUnavailableError, JobFailedError, JobTimeoutError
from dispatcher.schemas import GenerationParameters, JobResult

if TYPE_CHECKING:
    from dispatcher.broker.connection import BrokerContext

logger = structlog.get_logger(__name__)

# Cap on the events stream, trimmed approximately on every add.
_EVENTS_MAXLEN = 10_000
_FINISHED_STATES = ("completed", "failed")

# Delayed scores keep the low 12 bits for the job id, so jobs due in the
# same millisecond stay ordered by id.
_DELAY_SCORE_SHIFT = 0x1000
_DELAY_ID_MASK = 0xFFF


def delayed_score(ready_at_ms: int, job_id: str) -> int:
    """Sort key of a delayed job, as BullMQ workers decode it."""
    return ready_at_ms * _DELAY_SCORE_SHIFT + (int(job_id) & _DELAY_ID_MASK)


class RedisJobQueue:
    """JobQueue backed by Redis. One instance per model, all sharing one pool."""

    def __init__(
        self,
        broker: BrokerContext,
        name: str,
        prefix: str = "bull",
        listener: CompletionListener | None = None,
        retry_seconds: float = 1.0,
    ) -> None:
        self._broker = broker
        self._name = name
        self._prefix = prefix
        self._listener = listener or CompletionListener(
            broker, self.key("events"), retry_seconds=retry_seconds
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def listener(self) -> CompletionListener:
        return self._listener

    def key(self, suffix: str) -> str:
        return f"{self._prefix}:{self._name}:{suffix}"

    async def depth(self) -> int:
        """Jobs not yet finished: active + delayed + waiting."""
        try:
            async with self._broker.client.pipeline(transaction=False) as pipe:
                pipe.llen(self.key("active"))
                pipe.zcard(self.key("delayed"))
                pipe.llen(self.key("wait"))
                active, delayed, waiting = await pipe.execute()
        except (RedisError, OSError) as e:
            raise BackendUnavailableError("depth", str(e)) from e
        return int(active) + int(delayed) + int(waiting)

    async def enqueue(
        self,
        payload: GenerationParameters,
        delay_seconds: float,
        retention_limit: int,
    ) -> JobHandle:
        """Add a job at the tail of the queue, visible to workers after the delay."""
        client = self._broker.client
        job_id: str | None = None
        try:
            job_id = str(await client.incr(self.key("id")))
            # Register before the job is visible so its completion cannot be missed.
            handle = JobHandle(
                queue=self._name, job_id=job_id, result=self._listener.register(job_id)
            )

            now_ms = int(time.time() * 1000)
            delay_ms = int(delay_seconds * 1000)
            ready_at_ms = now_ms + delay_ms
            opts = {
                "delay": delay_ms,
                "attempts": 1,
                "removeOnComplete": retention_limit,
                "removeOnFail": retention_limit,
            }
            async with client.pipeline(transaction=True) as pipe:
                pipe.hset(
                    self.key(job_id),
                    mapping={
                        "name": self._name,
                        "data": payload.model_dump_json(),
                        "opts": json.dumps(opts),
                        "timestamp": now_ms,
                        "delay": delay_ms,
                        "priority": 0,
                    },
                )
                if delay_ms > 0:
                    pipe.zadd(self.key("delayed"), {job_id: delayed_score(ready_at_ms, job_id)})
                    # Only ever moves the delayed marker earlier.
                    pipe.zadd(self.key("marker"), {"1": ready_at_ms}, lt=True)
                    event = {"event": "delayed", "jobId": job_id, "delay": ready_at_ms}
                else:
                    pipe.lpush(self.key("wait"), job_id)
                    pipe.zadd(self.key("marker"), {"0": 0})
                    event = {"event": "waiting", "jobId": job_id}
                pipe.xadd(self.key("events"), event, maxlen=_EVENTS_MAXLEN, approximate=True)
                await pipe.execute()
        except (RedisError, OSError) as e:
            if job_id is not None:
                self._listener.discard(job_id)
            raise BackendUnavailableError("enqueue", str(e)) from e

        logger.debug("job_enqueued", queue=self._name, job_id=job_id, delay_ms=delay_ms)
        await self._prune(retention_limit)
        return handle

    async def wait_until_finished(self, handle: JobHandle, timeout_seconds: float) -> JobResult:
        """Suspend until the job completes, fails, or the timeout passes.

        A timeout abandons only the local wait; the job stays in Redis.
        """
        waiter = handle.result or self._listener.register(handle.job_id)
        try:
            finished = await self._finished_result(handle.job_id)
            if finished is not None:
                return finished
            return await asyncio.wait_for(waiter, timeout=timeout_seconds)
        except TimeoutError:
            raise JobTimeoutError(handle.job_id, timeout_seconds) from None
        finally:
            self._listener.discard(handle.job_id)

    async def _finished_result(self, job_id: str) -> JobResult | None:
        """Result already stored on the job hash, for jobs finished before we waited."""
        try:
            finished_on, returnvalue, failed_reason = await self._broker.client.hmget(
                self.key(job_id), ["finishedOn", "returnvalue", "failedReason"]
            )
        except (RedisError, OSError) as e:
            raise BackendUnavailableError("wait", str(e)) from e
        if not finished_on:
            return None
        if failed_reason:
            raise JobFailedError(job_id, failed_reason)
        return parse_result(job_id, returnvalue)

    async def _prune(self, retention_limit: int) -> None:
        """Keep only the newest ``retention_limit`` completed and failed jobs."""
        client = self._broker.client
        try:
            for state in _FINISHED_STATES:
                stale = await client.zrange(self.key(state), 0, -(retention_limit + 1))
                if not stale:
                    continue
                async with client.pipeline(transaction=True) as pipe:
                    pipe.zrem(self.key(state), *stale)
                    pipe.delete(*(self.key(job_id) for job_id in stale))
                    await pipe.execute()
                logger.debug("jobs_pruned", queue=self._name, state=state, count=len(stale))
        except (RedisError, OSError) as e:
            # The job is already queued; retention catches up on the next add.
            logger.warning("job_prune_failed", queue=self._name, error=str(e))
