# ─────────────────────────────────────────────────────────────────────────────
# Tests — CompletionListener (event stream tailing + waiter resolution)
# ─────────────────────────────────────────────────────────────────────────────

import asyncio
import json
from unittest.mock import MagicMock

import pytest
from doubles import fake_redis
from redis.exceptions import ConnectionError as RedisConnectionError

from dispatcher.broker.connection import BrokerContext
from dispatcher.broker.events import CompletionListener, parse_result
from dispatcher.exceptions import BackendUnavailableError, JobFailedError

STREAM = "bull:aom:events"


def _completed(job_id: str, seed: int = 1) -> dict[str, str]:
    return {
        "event": "completed",
        "jobId": job_id,
        "returnvalue": json.dumps({"base64": "img", "seed": seed}),
    }


async def _block_forever(*args, **kwargs):
    await asyncio.sleep(3600)


def _listener(client: MagicMock, retry_seconds: float = 0.01) -> CompletionListener:
    broker = MagicMock(spec=BrokerContext)
    broker.client = client
    return CompletionListener(broker, STREAM, retry_seconds=retry_seconds, block_ms=10)


class TestHandleEvent:
    async def test_completed_resolves_waiter(self):
        listener = _listener(MagicMock())
        waiter = listener.register("5")

        listener.handle_event(_completed("5", seed=77))

        assert waiter.result().seed == 77
        assert listener.pending == 0

    async def test_failed_rejects_waiter(self):
        listener = _listener(MagicMock())
        waiter = listener.register("5")

        listener.handle_event({"event": "failed", "jobId": "5", "failedReason": "bad sampler"})

        with pytest.raises(JobFailedError, match="bad sampler"):
            waiter.result()

    async def test_other_events_ignored(self):
        listener = _listener(MagicMock())
        waiter = listener.register("5")

        listener.handle_event({"event": "active", "jobId": "5"})
        listener.handle_event({"event": "progress", "jobId": "5", "data": "50"})

        assert not waiter.done()
        assert listener.pending == 1

    async def test_unknown_job_ignored(self):
        listener = _listener(MagicMock())
        listener.handle_event(_completed("404"))
        assert listener.pending == 0

    async def test_register_is_idempotent(self):
        listener = _listener(MagicMock())
        assert listener.register("1") is listener.register("1")
        assert listener.pending == 1

    async def test_discard_cancels_local_wait_only(self):
        listener = _listener(MagicMock())
        waiter = listener.register("1")
        listener.discard("1")
        assert waiter.cancelled()
        assert listener.pending == 0


class TestParseResult:
    def test_valid(self):
        result = parse_result("1", json.dumps({"base64": "a", "seed": 3, "info": "x"}))
        assert result.base64 == "a"
        assert result.model_extra == {"info": "x"}

    @pytest.mark.parametrize("raw", [None, "", "not json", "[]", '{"base64": "a"}'])
    def test_malformed(self, raw):
        with pytest.raises(JobFailedError):
            parse_result("1", raw)


class TestRunLoop:
    async def test_reads_from_stream_tail(self):
        client, _pipe = fake_redis()
        client.xrevrange.return_value = [("1700-3", {"event": "waiting", "jobId": "2"})]
        calls = []

        async def xread(streams, count, block):
            calls.append(dict(streams))
            if len(calls) == 1:
                return [[STREAM, [("1700-4", _completed("9"))]]]
            await asyncio.sleep(3600)

        client.xread.side_effect = xread
        listener = _listener(client)
        waiter = listener.register("9")

        listener.start()
        result = await asyncio.wait_for(waiter, timeout=1)
        await listener.stop()

        assert result.base64 == "img"
        assert calls[0] == {STREAM: "1700-3"}
        assert not listener.running

    async def test_empty_stream_starts_from_zero(self):
        client, _pipe = fake_redis()
        client.xread.side_effect = _block_forever
        listener = _listener(client)

        listener.start()
        await asyncio.sleep(0.01)
        await listener.stop()

        assert client.xread.await_args.args[0] == {STREAM: "0-0"}

    async def test_retries_after_read_error(self):
        client, _pipe = fake_redis()
        attempts = 0

        async def xread(streams, count, block):
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RedisConnectionError("Connection reset by peer")
            if attempts == 2:
                return [[STREAM, [("1-1", _completed("3"))]]]
            await asyncio.sleep(3600)

        client.xread.side_effect = xread
        listener = _listener(client)
        waiter = listener.register("3")

        listener.start()
        result = await asyncio.wait_for(waiter, timeout=1)
        await listener.stop()

        assert result.seed == 1
        assert attempts >= 2

    async def test_stop_fails_pending_waiters(self):
        client, _pipe = fake_redis()
        client.xread.side_effect = _block_forever
        listener = _listener(client)
        waiter = listener.register("11")

        listener.start()
        await asyncio.sleep(0)
        await listener.stop()

        with pytest.raises(BackendUnavailableError):
            waiter.result()
        assert listener.pending == 0

    async def test_start_twice_keeps_one_task(self):
        client, _pipe = fake_redis()
        client.xread.side_effect = _block_forever
        listener = _listener(client)

        listener.start()
        task = listener._task
        listener.start()
        assert listener._task is task
        await listener.stop()
