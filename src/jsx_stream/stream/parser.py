"""
SSE Frame Parser
================

Splits a server-sent-events byte stream into "data:" payloads and decodes
them into typed events.

Network chunks do not respect line boundaries: one chunk may hold several
frames, and a frame may be split across chunks. The parser holds back the
trailing partial line until the rest arrives.

Design Rules:
    - Only "data:" lines carry payloads; comments and other fields are skipped
    - A payload that is not valid JSON or not a known event raises
      FrameDecodeError; callers count it and move on
    - The {"connected": true} handshake decodes to None
"""

import json
import logging
from typing import List, Optional

from pydantic import ValidationError

from jsx_stream.models.events import StreamEvent, parse_event


logger = logging.getLogger(__name__)


DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class FrameDecodeError(ValueError):
    """Raised when a data payload cannot be decoded into an event."""

    def __init__(self, message: str, payload: str) -> None:
        self.payload = payload
        super().__init__(message)


class SSEFrameParser:
    """
    Incremental splitter for newline-delimited SSE data frames.

    Example:
        parser = SSEFrameParser()
        parser.feed('data: {"type": "message_st')   # []
        parser.feed('op"}\\n')                       # ['{"type": "message_stop"}']
    """

    def __init__(self) -> None:
        self._pending = ""

    @property
    def pending(self) -> str:
        """Unterminated text held back from the last chunk."""
        return self._pending

    def feed(self, chunk: str) -> List[str]:
        """
        Add a chunk and return every complete data payload in it.

        Args:
            chunk: Decoded text as received from the network

        Returns:
            Payload strings, in order.
        """
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        return [payload for payload in map(self._payload, lines) if payload is not None]

    def flush(self) -> List[str]:
        """Return a final frame that arrived without a trailing newline."""
        line, self._pending = self._pending, ""
        payload = self._payload(line)
        return [] if payload is None else [payload]

    @staticmethod
    def _payload(line: str) -> Optional[str]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        payload = line[len(DATA_PREFIX):]
        if payload.startswith(" "):
            payload = payload[1:]
        if not payload.strip():
            return None
        return payload


def load_payload(payload: str) -> Optional[dict]:
    """
    Parse one data payload into a JSON object with a "type" field.

    Returns:
        The object, or None for the connection handshake and "[DONE]".

    Raises:
        FrameDecodeError: Malformed JSON, not an object, or no type
    """
    if payload.strip() == DONE_SENTINEL:
        return None

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"Invalid JSON: {e}", payload) from e

    if not isinstance(data, dict):
        raise FrameDecodeError(f"Expected a JSON object, got {type(data).__name__}", payload)

    if "type" not in data:
        if data.get("connected"):
            logger.debug("Stream handshake received")
            return None
        raise FrameDecodeError("Frame has no 'type' field", payload)
    return data


def decode_event(payload: str) -> Optional[StreamEvent]:
    """
    Decode one data payload.

    Returns:
        Typed event, or None for the connection handshake and "[DONE]".

    Raises:
        FrameDecodeError: Malformed JSON, unknown type or schema violation
    """
    data = load_payload(payload)
    if data is None:
        return None
    return validate_event(data, payload)


def validate_event(data: dict, payload: str) -> StreamEvent:
    """Validate a loaded frame, wrapping schema errors in FrameDecodeError."""
    try:
        return parse_event(data)
    except ValidationError as e:
        raise FrameDecodeError(
            f"Invalid '{data.get('type')}' event: {e.error_count()} validation error(s)",
            payload,
        ) from e
