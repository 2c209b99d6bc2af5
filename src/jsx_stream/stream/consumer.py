"""
Stream Consumer
===============

HTTP client that POSTs a generation request and consumes the SSE response.

This module provides the StreamConsumer class which:
    - Opens a streaming POST request with httpx
    - Splits the body into data frames and hands them to the ingestor
    - Treats non-2xx responses, read errors and premature EOF as failures
    - Reconnects with capped exponential backoff, replaying resumption context
    - Can be abandoned mid-request without waiting for the stream to end

Design Rules:
    - Does NOT interpret events; the ingestor owns all registry writes
    - Exhausting retries leaves the session DISCONNECTED, nothing else is fatal
    - Backoff waits on the stop event so abandon() takes effect immediately
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from jsx_stream.models.events import MessageStop
from jsx_stream.models.session import ConnectionState, StreamSession
from jsx_stream.stream.ingestor import StreamIngestor, UpstreamError
from jsx_stream.stream.parser import SSEFrameParser


logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Connection-level failure: bad status, dropped connection, premature EOF."""


class StreamConsumer:
    """
    SSE consumer for one generation request.

    Attributes:
        url: Endpoint the request is POSTed to
        ingestor: Receives every data payload
        max_retries: Reconnect attempts before giving up
        connected: Whether a response body is currently being read

    Example:
        ingestor = StreamIngestor(ComponentRegistry(capacity=20))
        consumer = StreamConsumer(
            url="http://localhost:3001/api/generate",
            ingestor=ingestor,
            request_body={"prompt": "A landing page for a bakery"},
        )

        task = asyncio.create_task(consumer.run())

        # Later, drop the request without waiting for it to finish
        await consumer.abandon()
        await task
    """

    def __init__(
        self,
        url: str,
        ingestor: StreamIngestor,
        request_body: Optional[Dict[str, Any]] = None,
        max_retries: int = 3,
        backoff_base_ms: int = 500,
        backoff_max_ms: int = 8000,
        timeout_seconds: float = 120.0,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize stream consumer.

        Args:
            url: Generation endpoint
            ingestor: Ingestor that applies decoded events
            request_body: JSON body sent with every attempt
            max_retries: Reconnect attempts after a failure
            backoff_base_ms: First backoff delay
            backoff_max_ms: Upper bound for the backoff delay
            timeout_seconds: Read timeout for the streaming response
            headers: Extra request headers
            client: Shared httpx client (created per run when omitted)
        """
        self.url = url
        self.ingestor = ingestor
        self.request_body = dict(request_body or {})
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self.backoff_max_ms = backoff_max_ms
        self.timeout_seconds = timeout_seconds
        self.headers = {"Accept": "text/event-stream", **(headers or {})}

        # State
        self._client = client
        self._connected: bool = False
        self._running: bool = False
        self._abandoned: bool = False
        self._stop_event: asyncio.Event = asyncio.Event()
        self._attempt: Optional[asyncio.Task] = None

    @property
    def session(self) -> StreamSession:
        return self.ingestor.session

    @property
    def connected(self) -> bool:
        """Whether a response body is currently being read."""
        return self._connected

    @property
    def running(self) -> bool:
        return self._running

    def backoff_delay(self, attempt: int) -> float:
        """Delay in seconds before reconnect `attempt` (1-based)."""
        delay_ms = min(self.backoff_base_ms * 2 ** (attempt - 1), self.backoff_max_ms)
        return delay_ms / 1000.0

    def build_request_body(self) -> Dict[str, Any]:
        """Request body for the next attempt, with resumption context if any."""
        body = dict(self.request_body)
        hint = self.session.resumption_hint
        if hint is not None:
            body.update(hint.to_request_fields())
        return body

    async def run(self) -> ConnectionState:
        """
        Run the request until message_stop, exhaustion or abandon().

        Returns:
            Final connection state (IDLE or DISCONNECTED).
        """
        self._running = True
        self._abandoned = False
        self._stop_event.clear()

        session = self.session
        if session.state is not ConnectionState.IDLE:
            session.reset()
        self.ingestor.begin()
        session.transition(ConnectionState.CONNECTING)
        logger.info(f"StreamConsumer starting, connecting to {self.url}")

        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds, connect=10.0)
        )

        try:
            while self._running:
                self._attempt = asyncio.ensure_future(self._connect_and_consume(client))
                try:
                    await self._attempt
                    break
                except asyncio.CancelledError:
                    if self._abandoned:
                        break
                    raise
                except (TransportError, UpstreamError, httpx.HTTPError) as e:
                    if not self._running:
                        break
                    logger.error(f"Stream error: {e}")
                    self.ingestor.handle_transport_error(e)

                    if isinstance(e, UpstreamError) and not e.retryable:
                        logger.error("Upstream error is not retryable, giving up")
                        session.transition(ConnectionState.DISCONNECTED)
                        break

                    if session.retry_count >= self.max_retries:
                        logger.error(f"Max reconnect attempts ({self.max_retries}) exceeded")
                        session.transition(ConnectionState.DISCONNECTED)
                        break

                    session.retry_count += 1
                    session.health.reconnect_attempts += 1
                    backoff_sec = self.backoff_delay(session.retry_count)
                    logger.info(
                        f"Reconnecting in {backoff_sec:.1f}s "
                        f"(attempt {session.retry_count}/{self.max_retries})"
                    )

                    try:
                        await asyncio.wait_for(self._stop_event.wait(), timeout=backoff_sec)
                        # Abandoned during backoff
                        break
                    except asyncio.TimeoutError:
                        pass
                    session.transition(ConnectionState.CONNECTING)
                finally:
                    self._attempt = None
        finally:
            self._running = False
            self._connected = False
            if owns_client:
                await client.aclose()

        logger.info(f"StreamConsumer stopped ({session.state.value})")
        return session.state

    async def abandon(self) -> None:
        """
        Cancel the in-flight request and discard resumption context.

        Safe to call at any time, including during backoff.
        """
        logger.info("StreamConsumer abandoning request")
        self._abandoned = True
        self._running = False
        self._stop_event.set()

        attempt = self._attempt
        if attempt is not None and not attempt.done():
            attempt.cancel()
            try:
                await attempt
            except (asyncio.CancelledError, Exception):
                pass

        self._connected = False
        self.ingestor.abandon()

    async def stop(self) -> None:
        """Alias of abandon() for lifespan shutdown."""
        await self.abandon()

    async def _connect_and_consume(self, client: httpx.AsyncClient) -> None:
        """POST the request and feed the response to the ingestor until message_stop."""
        body = self.build_request_body()
        session = self.session

        async with client.stream("POST", self.url, json=body, headers=self.headers) as response:
            if not response.is_success:
                detail = (await response.aread()).decode("utf-8", errors="replace")[:200]
                raise TransportError(f"HTTP {response.status_code} from {self.url}: {detail}")

            self._connected = True
            if session.state is ConnectionState.CONNECTING:
                session.transition(ConnectionState.STREAMING)
            logger.info(f"Connected to generation stream: {self.url}")

            parser = SSEFrameParser()
            try:
                async for chunk in response.aiter_text():
                    if self._feed(parser.feed(chunk)):
                        return
                if self._feed(parser.flush()):
                    return
            finally:
                self._connected = False

        raise TransportError("Stream ended before message_stop")

    def _feed(self, payloads) -> bool:
        """Apply payloads; True once message_stop has been applied."""
        for payload in payloads:
            event = self.ingestor.ingest_payload(payload)
            if event is None:
                continue
            # A frame made it through, the connection is healthy again
            self.session.retry_count = 0
            if isinstance(event, MessageStop):
                return True
        return False
