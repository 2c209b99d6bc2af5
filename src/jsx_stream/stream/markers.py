"""
Marker Splitter
===============

Turns raw model text annotated with component markers into component
events, for upstreams that stream plain model output instead of
per-component events:

    /// START HeroSection position=header
    export default function HeroSection() { ... }
    /// END HeroSection

becomes content_block_start, one content_block_delta per chunk of code,
and content_block_stop for "hero_section".

Design Rules:
    - A marker only counts on its own line at the top level of the
      component being written; inside braces, strings or comments it is code
    - A line that may still become a marker is held until its newline arrives
    - Text outside any component is dropped
    - Does NOT touch the registry; the ingestor applies the events
"""

import logging
from typing import List, Optional

from jsx_stream.models.component import component_id_from_name
from jsx_stream.models.events import StreamEvent, parse_event
from jsx_stream.repair.cleaner import Marker, parse_marker
from jsx_stream.repair.tracker import scan
from jsx_stream.stream.parser import FrameDecodeError, load_payload, validate_event


logger = logging.getLogger(__name__)


# Frame types of a raw model stream that carry no component information
_MODEL_FRAMES = frozenset({"content_block_start", "content_block_stop", "message_delta", "ping"})


def _may_become_marker(fragment: str) -> bool:
    stripped = fragment.lstrip(" \t")
    return stripped.startswith("///") or "///".startswith(stripped)


class MarkerSplitter:
    """
    Incremental marker-to-event converter for one message.

    Attributes:
        active_name: Component currently between START and END, if any
        dropped_chars: Characters discarded because no component was active

    Example:
        splitter = MarkerSplitter()
        splitter.feed("/// START Hero\\nfunction Hero() {")
        # [ContentBlockStart(...), ContentBlockDelta(...)]
    """

    def __init__(self) -> None:
        self.active_name: Optional[str] = None
        self._body = ""
        self._content: List[str] = []
        self._pending = ""
        self._mid_line = False
        self.dropped_chars = 0

    @property
    def active_id(self) -> Optional[str]:
        return component_id_from_name(self.active_name) if self.active_name else None

    def reset(self) -> None:
        self.active_name = None
        self._body = ""
        self._content = []
        self._pending = ""
        self._mid_line = False

    def decode(self, payload: str) -> List[StreamEvent]:
        """
        Decode one data payload of a raw model stream.

        Text deltas go through feed(); message_stop flushes held text first;
        error and message_start frames pass through unchanged.

        Raises:
            FrameDecodeError: Malformed JSON, or a delta without text
        """
        data = load_payload(payload)
        if data is None:
            return []

        kind = data["type"]
        if kind == "content_block_delta":
            delta = data.get("delta")
            text = delta.get("text") if isinstance(delta, dict) else None
            if not isinstance(text, str):
                raise FrameDecodeError("Text delta has no 'text' field", payload)
            return self.feed(text)
        if kind in _MODEL_FRAMES:
            return []

        event = validate_event(data, payload)
        if kind == "message_stop":
            return self.flush() + [event]
        return [event]

    def feed(self, text: str) -> List[StreamEvent]:
        """Consume a chunk of model text; return the events it completes."""
        events: List[StreamEvent] = []
        lines = (self._pending + text).split("\n")
        self._pending = ""
        tail = lines.pop()

        for index, line in enumerate(lines):
            if index == 0 and self._mid_line:
                self._collect(line + "\n")
            else:
                self._take_line(line, events)
        if lines:
            self._mid_line = False

        if tail:
            if not self._mid_line and _may_become_marker(tail):
                self._pending = tail
            else:
                self._collect(tail)
                self._mid_line = True

        self._emit_content(events)
        return events

    def flush(self) -> List[StreamEvent]:
        """Treat held text as a finished line, e.g. a closing marker at end of stream."""
        events: List[StreamEvent] = []
        if self._pending:
            line, self._pending = self._pending, ""
            marker = self._marker(line)
            if marker is None:
                self._collect(line)
            else:
                self._apply_marker(marker, events)
        self._emit_content(events)
        return events

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _take_line(self, line: str, events: List[StreamEvent]) -> None:
        marker = self._marker(line)
        if marker is None:
            self._collect(line + "\n")
        else:
            self._apply_marker(marker, events)

    def _marker(self, line: str) -> Optional[Marker]:
        marker = parse_marker(line)
        if marker is None or not self._at_top_level():
            return None
        return marker

    def _at_top_level(self) -> bool:
        if not self._body and not self._content:
            return True
        state = scan(self._body + "".join(self._content))
        return not state.frames and state.string_quote is None and state.comment is None

    def _apply_marker(self, marker: Marker, events: List[StreamEvent]) -> None:
        self._emit_content(events)

        if marker.kind == "START":
            if self.active_name is not None:
                logger.warning(f"'{marker.name}' started before '{self.active_name}' ended")
                events.append(self._stop(is_complete=False))
            metadata = {"componentName": marker.name}
            if marker.position is not None:
                metadata["position"] = marker.position.value
            events.append(parse_event({"type": "content_block_start", "metadata": metadata}))
            self.active_name = marker.name
            self._body = ""
            return

        if marker.name != self.active_name:
            logger.warning(f"Ignoring END marker for '{marker.name}' (active: {self.active_name})")
            return
        events.append(self._stop(is_complete=True))
        self.active_name = None
        self._body = ""

    def _stop(self, is_complete: bool) -> StreamEvent:
        return parse_event({
            "type": "content_block_stop",
            "metadata": {"componentId": self.active_id, "isComplete": is_complete},
        })

    def _collect(self, text: str) -> None:
        if self.active_name is None:
            self.dropped_chars += len(text)
            logger.debug(f"Dropping {len(text)} chars outside any component")
            return
        self._content.append(text)

    def _emit_content(self, events: List[StreamEvent]) -> None:
        if not self._content:
            return
        text = "".join(self._content)
        self._content = []
        self._body += text
        events.append(parse_event({
            "type": "content_block_delta",
            "metadata": {"componentId": self.active_id},
            "delta": {"text": text},
        }))
