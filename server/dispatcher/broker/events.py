# ─────────────────────────────────────────────────────────────────────────────
# Completion Listener — resolves local futures from a queue's event stream
# ─────────────────────────────────────────────────────────────────────────────
# Workers XADD "completed" / "failed" entries to {prefix}:{queue}:events.
# One listener per queue tails that stream with a blocking XREAD and fulfils
# the future registered for the matching job id. Waiters are registered
# before the job is made visible, so a fast worker cannot beat the listener.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from dispatcher.exceptions import BackendUnavailableError, JobFailedError
from dispatcher.schemas import JobResult

if TYPE_CHECKING:
    from dispatcher.broker.connection import BrokerContext

logger = structlog.get_logger(__name__)

_READ_BATCH = 100


def parse_result(job_id: str, raw: str | None) -> JobResult:
    """Decode a worker's JSON return value. Malformed output counts as a failure."""
    try:
        return JobResult.model_validate(json.loads(raw or "null"))
    except (ValueError, ValidationError) as e:
        raise JobFailedError(job_id, f"malformed worker result: {e}") from e


class CompletionListener:
    """Tails one queue's event stream and delivers results to waiting requests."""

    def __init__(
        self,
        broker: BrokerContext,
        stream_key: str,
        retry_seconds: float = 1.0,
        block_ms: int = 5000,
    ) -> None:
        self._broker = broker
        self._stream_key = stream_key
        self._retry_seconds = retry_seconds
        self._block_ms = block_ms
        self._waiters: dict[str, asyncio.Future[JobResult]] = {}
        self._last_id: str | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        """Number of requests currently waiting on this queue."""
        return len(self._waiters)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def register(self, job_id: str) -> asyncio.Future[JobResult]:
        """Create (or return) the future a job's completion will resolve."""
        waiter = self._waiters.get(job_id)
        if waiter is None:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters[job_id] = waiter
        return waiter

    def discard(self, job_id: str) -> None:
        """Forget a waiter. The remote job is left untouched."""
        waiter = self._waiters.pop(job_id, None)
        if waiter is not None and not waiter.done():
            waiter.cancel()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"listener:{self._stream_key}")
        self._task.add_done_callback(self._on_done)

    async def stop(self) -> None:
        """Cancel the reader and fail any request still waiting."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        for job_id, waiter in list(self._waiters.items()):
            if not waiter.done():
                waiter.set_exception(BackendUnavailableError("wait", "listener stopped"))
            self._waiters.pop(job_id, None)

    async def _run(self) -> None:
        logger.info("completion_listener_started", stream=self._stream_key)
        while True:
            try:
                if self._last_id is None:
                    self._last_id = await self._stream_tail()
                response = await self._broker.client.xread(
                    {self._stream_key: self._last_id},
                    count=_READ_BATCH,
                    block=self._block_ms,
                )
            except (RedisError, OSError) as e:
                logger.warning(
                    "completion_listener_read_failed",
                    stream=self._stream_key,
                    error=str(e),
                    retry_in=self._retry_seconds,
                )
                await asyncio.sleep(self._retry_seconds)
                continue

            for _stream, entries in response or []:
                for entry_id, fields in entries:
                    self._last_id = entry_id
                    self.handle_event(fields)

    async def _stream_tail(self) -> str:
        """ID of the newest entry, so only events from now on are read."""
        newest = await self._broker.client.xrevrange(self._stream_key, count=1)
        return newest[0][0] if newest else "0-0"

    def handle_event(self, fields: dict[str, str]) -> None:
        """Resolve the waiter matching one stream entry, if anyone is waiting."""
        event = fields.get("event")
        if event not in ("completed", "failed"):
            return
        job_id = fields.get("jobId", "")
        waiter = self._waiters.pop(job_id, None)
        if waiter is None or waiter.done():
            return

        if event == "failed":
            waiter.set_exception(JobFailedError(job_id, fields.get("failedReason", "unknown")))
            return
        try:
            waiter.set_result(parse_result(job_id, fields.get("returnvalue")))
        except JobFailedError as e:
            waiter.set_exception(e)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        """Log a listener that died for any reason other than shutdown."""
        if task.cancelled():
            return
        if exc := task.exception():
            logger.critical(
                "completion_listener_crashed",
                stream=self._stream_key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
