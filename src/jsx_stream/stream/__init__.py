"""
Stream Module
=============

SSE consumption and event ingestion components.

This module provides the ingestion layer for jsx-stream-preview:
    - SSEFrameParser: Splits network chunks into data payloads
    - MarkerSplitter: Turns marked raw model text into component events
    - StreamIngestor: Applies decoded events to the component registry
    - StreamConsumer: httpx client with reconnection and resumption

Example:
    from jsx_stream.registry import ComponentRegistry
    from jsx_stream.stream import StreamConsumer, StreamIngestor

    ingestor = StreamIngestor(ComponentRegistry(capacity=20))
    consumer = StreamConsumer(
        url="http://localhost:3001/api/generate",
        ingestor=ingestor,
        request_body={"prompt": "A pricing page"},
    )

    # Run consumer as background task
    task = asyncio.create_task(consumer.run())
"""

from jsx_stream.stream.parser import FrameDecodeError, SSEFrameParser, decode_event
from jsx_stream.stream.markers import MarkerSplitter
from jsx_stream.stream.ingestor import StreamIngestor, UpstreamError
from jsx_stream.stream.consumer import StreamConsumer, TransportError


__all__ = [
    "FrameDecodeError",
    "SSEFrameParser",
    "decode_event",
    "MarkerSplitter",
    "StreamIngestor",
    "UpstreamError",
    "StreamConsumer",
    "TransportError",
]
