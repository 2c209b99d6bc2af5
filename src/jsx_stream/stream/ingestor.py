"""
Stream Ingestor
===============

Applies decoded stream events to the component registry.

Event handling:
    content_block_start  -> new Streaming record (or resume an interrupted one)
    content_block_delta  -> append fragment, rebuild preview, publish
    content_block_stop   -> final rebuild, Complete or Errored
    message_start        -> session Streaming
    message_stop         -> session Idle; no further events until begin()
    error                -> Errored record, or UpstreamError for the consumer

With a MarkerSplitter, payloads are raw model frames whose text carries
/// START and /// END lines; the splitter turns them into the events above.

Design Rules:
    - Events are applied strictly in arrival order
    - Each frame publishes at most one record update
    - Malformed frames are counted and skipped, never applied
    - Does NOT do any network I/O
"""

import logging
import time
from typing import Callable, Optional

from jsx_stream.models.component import ComponentRecord, ComponentStatus
from jsx_stream.models.events import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    MessageStart,
    MessageStop,
    StreamError,
    StreamEvent,
)
from jsx_stream.models.session import ConnectionState, ResumptionHint, StreamSession
from jsx_stream.registry.store import ComponentRegistry
from jsx_stream.repair.preview import build_preview
from jsx_stream.stream.markers import MarkerSplitter
from jsx_stream.stream.parser import FrameDecodeError, decode_event


logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Stream-level error reported by the upstream (no component attached)."""

    def __init__(self, message: str, code: Optional[str] = None, retryable: bool = True) -> None:
        self.code = code
        self.retryable = retryable
        super().__init__(message if code is None else f"{code}: {message}")


class StreamIngestor:
    """
    Event-to-registry state machine for one session.

    Attributes:
        registry: Registry written to
        session: Session state, health counters and resumption hint

    Example:
        ingestor = StreamIngestor(ComponentRegistry(), StreamSession())
        for payload in parser.feed(chunk):
            ingestor.ingest_payload(payload)
    """

    def __init__(
        self,
        registry: ComponentRegistry,
        session: Optional[StreamSession] = None,
        clock: Callable[[], float] = time.time,
        splitter: Optional[MarkerSplitter] = None,
    ) -> None:
        self.registry = registry
        self.session = session or StreamSession()
        self._clock = clock
        self._splitter = splitter
        self._active_id: Optional[str] = None
        self._accepting = True

    @property
    def active_component_id(self) -> Optional[str]:
        """Id of the component currently receiving deltas."""
        return self._active_id

    @property
    def accepting(self) -> bool:
        return self._accepting

    def begin(self) -> None:
        """Start accepting events for a new message."""
        self._accepting = True

    def ingest_payload(self, payload: str) -> Optional[StreamEvent]:
        """
        Decode and apply one SSE data payload.

        With a MarkerSplitter the payload is raw model output and may
        yield several component events, or none yet.

        Returns:
            The last applied event, or None if nothing was applied.
        """
        try:
            if self._splitter is not None:
                events = self._splitter.decode(payload)
            else:
                event = decode_event(payload)
                events = [event] if event is not None else []
        except FrameDecodeError as e:
            self.session.health.parse_errors += 1
            logger.error(f"Skipping malformed frame: {e}")
            return None

        for event in events:
            self.apply(event)
        return events[-1] if events else None

    def apply(self, event: StreamEvent) -> None:
        """
        Apply one typed event.

        Raises:
            UpstreamError: Error event without a component id
        """
        if not self._accepting:
            logger.warning(f"Ignoring '{event.type}' after message_stop")
            return

        self.session.health.messages_received += 1
        self.session.health.last_message_time = self._clock()

        if isinstance(event, ContentBlockStart):
            self._ensure_streaming()
            self._on_start(event)
        elif isinstance(event, ContentBlockDelta):
            self._ensure_streaming()
            self._on_delta(event)
        elif isinstance(event, ContentBlockStop):
            self._on_stop(event)
        elif isinstance(event, MessageStart):
            self._ensure_streaming()
        elif isinstance(event, MessageStop):
            self._on_message_stop()
        elif isinstance(event, StreamError):
            self._on_error(event)

    def handle_transport_error(self, error: Exception) -> Optional[ResumptionHint]:
        """
        Record a transport failure and capture resumption context.

        Returns:
            The resumption hint now held by the session, if any.
        """
        session = self.session
        if session.state in (ConnectionState.CONNECTING, ConnectionState.STREAMING):
            session.transition(ConnectionState.ERROR)
        session.health.error_count += 1

        record = self.registry.get(self._active_id) if self._active_id else None
        if record is not None and record.status is ComponentStatus.STREAMING:
            session.resumption_hint = ResumptionHint(
                component_id=record.id,
                component_name=record.name,
                partial_code=record.raw_text,
            )
            logger.info(
                f"Stream interrupted during '{record.name}' "
                f"({len(session.resumption_hint.partial_code)} chars received): {error}"
            )
        return session.resumption_hint

    def abandon(self) -> None:
        """Drop the session state and resumption hint; keep the registry."""
        self._active_id = None
        if self._splitter is not None:
            self._splitter.reset()
        self._accepting = True
        self.session.reset()

    def reset(self) -> int:
        """
        Abandon the session and clear the registry.

        Returns:
            Number of records removed.
        """
        self.abandon()
        return self.registry.clear()

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def _ensure_streaming(self) -> None:
        session = self.session
        if session.state in (ConnectionState.IDLE, ConnectionState.ERROR):
            session.transition(ConnectionState.CONNECTING)
        if session.state is ConnectionState.CONNECTING:
            session.transition(ConnectionState.STREAMING)

    def _on_start(self, event: ContentBlockStart) -> None:
        component_id = event.component_id
        existing = self.registry.get(component_id)
        hint = self.session.resumption_hint

        if (
            hint is not None
            and hint.component_id == component_id
            and existing is not None
            and existing.status is ComponentStatus.STREAMING
        ):
            logger.info(f"Resuming '{existing.name}' with {len(existing.raw_buffer)} fragment(s) kept")
            self.session.resumption_hint = None
            self._active_id = component_id
            return

        record = ComponentRecord(
            id=component_id,
            name=event.metadata.component_name,
            position=event.metadata.position,
            sequence=self.registry.next_sequence(),
            last_updated=self._clock(),
        )
        if existing is not None:
            logger.info(f"Restarting component '{component_id}'")
        self.registry.upsert(record)
        self._active_id = component_id
        logger.debug(f"Component started: {record.name} ({record.position.value})")

    def _on_delta(self, event: ContentBlockDelta) -> None:
        record = self.registry.get(event.component_id)
        if record is None:
            logger.warning(f"Delta for unknown component '{event.component_id}'")
            return
        if record.status.is_terminal:
            logger.warning(f"Delta for {record.status.value} component '{record.id}' ignored")
            return
        fragment = event.delta.text
        if not fragment:
            return

        build = build_preview(record.raw_text + fragment, streaming=True, preferred_name=record.name)
        self.registry.upsert(record.appended(fragment, build.code, self._clock()))

    def _on_stop(self, event: ContentBlockStop) -> None:
        record = self.registry.get(event.component_id)
        if record is None:
            logger.warning(f"Stop for unknown component '{event.component_id}'")
            return
        if record.status.is_terminal:
            logger.warning(f"Stop for {record.status.value} component '{record.id}' ignored")
            return
        if not event.metadata.is_complete:
            logger.warning(f"Upstream marked '{record.name}' as incomplete")

        build = build_preview(record.raw_text, streaming=False, preferred_name=record.name)
        now = self._clock()
        if build.definitions:
            finished = record.finished(ComponentStatus.COMPLETE, build.code, now)
        else:
            logger.warning(f"No component definition found in '{record.name}'")
            finished = record.finished(
                ComponentStatus.ERRORED, None, now, error="no component definition found"
            )
        self.registry.upsert(finished)

        if self._active_id == record.id:
            self._active_id = None
        hint = self.session.resumption_hint
        if hint is not None and hint.component_id == record.id:
            self.session.resumption_hint = None

    def _on_message_stop(self) -> None:
        if self.session.state is ConnectionState.STREAMING:
            self.session.transition(ConnectionState.IDLE)
        self._accepting = False
        self._active_id = None
        logger.info("Message complete")

    def _on_error(self, event: StreamError) -> None:
        component_id = event.component_id
        if component_id is None:
            raise UpstreamError(event.description, code=event.code, retryable=event.retryable)

        record = self.registry.get(component_id)
        if record is None or record.status.is_terminal:
            logger.warning(f"Error for unavailable component '{component_id}': {event.description}")
            return

        logger.error(f"Component '{record.name}' failed: {event.description}")
        self.registry.upsert(
            record.finished(ComponentStatus.ERRORED, None, self._clock(), error=event.description)
        )
        if self._active_id == component_id:
            self._active_id = None
