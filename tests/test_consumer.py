"""
Stream Consumer Tests
=====================

Tests for the reconnecting SSE consumer, against a mocked transport.
"""

import asyncio
import json

import httpx
import pytest

from jsx_stream.models.component import ComponentStatus
from jsx_stream.models.session import ConnectionState
from jsx_stream.stream import StreamConsumer


URL = "http://generator.test/api/generate"


class ScriptedStream(httpx.AsyncByteStream):
    """Response body that yields chunks, then fails or hangs."""

    def __init__(self, chunks, fail=False, hang=False):
        self._chunks = chunks
        self._fail = fail
        self._hang = hang

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk.encode("utf-8")
        if self._fail:
            raise httpx.ReadError("connection reset by peer")
        if self._hang:
            await asyncio.Event().wait()


def _consumer(ingestor, handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    consumer = StreamConsumer(
        url=URL,
        ingestor=ingestor,
        request_body={"prompt": "landing page"},
        backoff_base_ms=1,
        backoff_max_ms=2,
        client=client,
        **kwargs,
    )
    return consumer, client


class TestBackoff:
    """Tests for reconnect delay and request body."""

    def test_backoff_doubles_and_caps(self, ingestor):
        """Verify backoff grows exponentially up to the cap."""
        consumer = StreamConsumer(URL, ingestor, backoff_base_ms=500, backoff_max_ms=8000)

        assert [consumer.backoff_delay(n) for n in (1, 2, 3, 5, 6)] == [0.5, 1.0, 2.0, 8.0, 8.0]

    def test_request_body_without_hint(self, ingestor):
        """Verify the configured body is sent unchanged."""
        consumer = StreamConsumer(URL, ingestor, request_body={"prompt": "x"})

        assert consumer.build_request_body() == {"prompt": "x"}


class TestRun:
    """Tests for StreamConsumer.run()."""

    async def test_consumes_until_message_stop(self, ingestor, registry, events):
        """Verify a full response is applied and the session ends idle."""
        body = events.sse(
            events.start("Hero"),
            events.delta("hero", "function Hero() { return <h1>Hi</h1>; }"),
            events.stop("hero"),
            events.message_stop(),
        )

        def handler(request):
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        consumer, client = _consumer(ingestor, handler)
        async with client:
            state = await consumer.run()

        assert state is ConnectionState.IDLE
        assert registry.get("hero").status is ComponentStatus.COMPLETE
        assert not consumer.running

    async def test_reconnects_and_resumes(self, ingestor, registry, events):
        """Verify a dropped stream reconnects with the interrupted component as context."""
        requests = []
        states = []
        ingestor.session.add_listener(lambda old, new: states.append(new))

        first = [
            events.sse(events.start("Hero")),
            events.sse(events.delta("hero", "function Hero() {\n  return <h1>Hel")),
        ]
        second = events.sse(
            events.start("Hero"),
            events.delta("hero", "lo</h1>;\n}"),
            events.stop("hero"),
            events.message_stop(),
        )

        def handler(request):
            requests.append(json.loads(request.content))
            if len(requests) == 1:
                return httpx.Response(200, stream=ScriptedStream(first, fail=True))
            return httpx.Response(200, text=second)

        consumer, client = _consumer(ingestor, handler)
        async with client:
            state = await consumer.run()

        assert state is ConnectionState.IDLE
        assert requests[0] == {"prompt": "landing page"}
        assert requests[1] == {
            "prompt": "landing page",
            "lastComponentName": "Hero",
            "lastComponentPartialCode": "function Hero() {\n  return <h1>Hel",
        }

        error_at = states.index(ConnectionState.ERROR)
        assert states[error_at:error_at + 3] == [
            ConnectionState.ERROR,
            ConnectionState.CONNECTING,
            ConnectionState.STREAMING,
        ]

        record = registry.get("hero")
        assert record.status is ComponentStatus.COMPLETE
        assert record.raw_text == "function Hero() {\n  return <h1>Hello</h1>;\n}"
        assert ingestor.session.retry_count == 0
        assert ingestor.session.health.reconnect_attempts == 1

    async def test_gives_up_after_max_retries(self, ingestor):
        """Verify exhausting retries leaves the session disconnected."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, text="unavailable")

        consumer, client = _consumer(ingestor, handler, max_retries=2)
        async with client:
            state = await consumer.run()

        assert state is ConnectionState.DISCONNECTED
        assert len(calls) == 3
        assert ingestor.session.health.reconnect_attempts == 2
        assert ingestor.session.health.error_count == 3

    async def test_premature_eof_is_retried(self, ingestor, registry, events):
        """Verify a body that ends without message_stop counts as a failure."""
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(200, text=events.sse(events.start("Hero")))
            return httpx.Response(200, text=events.sse(events.message_stop()))

        consumer, client = _consumer(ingestor, handler)
        async with client:
            state = await consumer.run()

        assert state is ConnectionState.IDLE
        assert len(calls) == 2

    async def test_non_retryable_upstream_error(self, ingestor, events):
        """Verify a non-retryable upstream error disconnects immediately."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, text=events.sse(events.error("quota exceeded", retryable=False)))

        consumer, client = _consumer(ingestor, handler)
        async with client:
            state = await consumer.run()

        assert state is ConnectionState.DISCONNECTED
        assert len(calls) == 1

    async def test_abandon_mid_stream(self, ingestor, registry, events):
        """Verify abandon() stops a hanging request and drops the session."""
        chunks = [
            events.sse(events.start("Hero")),
            events.sse(events.delta("hero", "function Hero() {\n  return <h1>Hel")),
        ]

        def handler(request):
            return httpx.Response(200, stream=ScriptedStream(chunks, hang=True))

        consumer, client = _consumer(ingestor, handler)
        async with client:
            task = asyncio.create_task(consumer.run())
            for _ in range(200):
                record = registry.get("hero")
                if record is not None and record.raw_buffer:
                    break
                await asyncio.sleep(0.01)

            await consumer.abandon()
            await asyncio.wait_for(task, timeout=5.0)

        assert ingestor.session.state is ConnectionState.IDLE
        assert ingestor.session.resumption_hint is None
        assert registry.get("hero").status is ComponentStatus.STREAMING
        assert not consumer.connected


@pytest.mark.parametrize("status_code", [400, 500])
async def test_error_status_is_transport_failure(ingestor, status_code):
    """Verify non-2xx responses are treated as failed attempts."""
    def handler(request):
        return httpx.Response(status_code, text="nope")

    consumer, client = _consumer(ingestor, handler, max_retries=0)
    async with client:
        state = await consumer.run()

    assert state is ConnectionState.DISCONNECTED
    assert ingestor.session.health.error_count == 1
