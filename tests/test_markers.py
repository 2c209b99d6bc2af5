"""
Marker Splitter Tests
=====================

Tests for turning marked model text into component events.
"""

import json

import pytest

from jsx_stream.models.component import ComponentStatus, Position
from jsx_stream.models.events import ContentBlockDelta, ContentBlockStart, ContentBlockStop
from jsx_stream.models.session import ConnectionState
from jsx_stream.stream import FrameDecodeError, MarkerSplitter, StreamIngestor


def _types(events):
    return [event.type for event in events]


@pytest.fixture
def splitter():
    """Provide a fresh MarkerSplitter."""
    return MarkerSplitter()


class TestMarkerSplitter:
    """Tests for MarkerSplitter.feed() and flush()."""

    def test_single_component(self, splitter):
        """Verify START, code and END become start, delta and stop."""
        events = splitter.feed(
            "/// START Hero position=header\n"
            "function Hero() {\n"
            "  return <h1>Hi</h1>;\n"
            "}\n"
            "/// END Hero\n"
        )

        assert _types(events) == ["content_block_start", "content_block_delta", "content_block_stop"]
        start, delta, stop = events
        assert start.component_id == "hero"
        assert start.metadata.position is Position.HEADER
        assert delta.delta.text == "function Hero() {\n  return <h1>Hi</h1>;\n}\n"
        assert stop.component_id == "hero"
        assert stop.metadata.is_complete

    def test_marker_split_across_chunks(self, splitter):
        """Verify a marker line cut by chunking is held until it is complete."""
        assert splitter.feed("/// STA") == []

        events = splitter.feed("RT Hero\nfunction Hero() {")
        assert _types(events) == ["content_block_start", "content_block_delta"]
        assert events[1].delta.text == "function Hero() {"

        events = splitter.feed(" return <p/>; }\n/// E")
        assert [e.delta.text for e in events] == [" return <p/>; }\n"]

        events = splitter.feed("ND Hero\n")
        assert len(events) == 1
        assert isinstance(events[0], ContentBlockStop)
        assert splitter.active_name is None

    def test_markers_inside_code_are_code(self, splitter):
        """Verify marker lines nested inside a component body stay code."""
        events = splitter.feed(
            "/// START Outer\n"
            "const Outer = () => {\n"
            "/// START Inner\n"
            "  return <div/>;\n"
            "/// END Inner\n"
            "};\n"
            "/// END Outer\n"
        )

        starts = [e for e in events if isinstance(e, ContentBlockStart)]
        assert [e.metadata.component_name for e in starts] == ["Outer"]
        deltas = [e for e in events if isinstance(e, ContentBlockDelta)]
        assert "/// START Inner" in deltas[0].delta.text
        assert isinstance(events[-1], ContentBlockStop)
        assert events[-1].component_id == "outer"

    def test_text_outside_components_dropped(self, splitter):
        """Verify chatter before the first START is not attributed to anyone."""
        events = splitter.feed("Here is your page:\n/// START Hero\n")

        assert _types(events) == ["content_block_start"]
        assert splitter.dropped_chars == len("Here is your page:\n")

    def test_mismatched_end_ignored(self, splitter, caplog):
        """Verify an END for another component does not stop the active one."""
        events = splitter.feed("/// START Hero\nfunction Hero() {}\n/// END Footer\n")

        assert _types(events) == ["content_block_start", "content_block_delta"]
        assert splitter.active_name == "Hero"
        assert "Ignoring END marker" in caplog.text

    def test_start_before_end_stops_previous(self, splitter):
        """Verify a new START closes the open component as incomplete."""
        events = splitter.feed("/// START Alpha\nfunction Alpha() {}\n/// START Beta\n")

        assert _types(events) == [
            "content_block_start",
            "content_block_delta",
            "content_block_stop",
            "content_block_start",
        ]
        assert events[2].component_id == "alpha"
        assert not events[2].metadata.is_complete
        assert splitter.active_name == "Beta"

    def test_flush_completes_final_marker(self, splitter):
        """Verify an END marker without a trailing newline is applied on flush."""
        splitter.feed("/// START Hero\nfunction Hero() { return <p/>; }\n/// END Hero")

        events = splitter.flush()

        assert _types(events) == ["content_block_stop"]


class TestDecode:
    """Tests for MarkerSplitter.decode() on raw model frames."""

    def test_text_frames_are_split(self, splitter, events):
        """Verify text deltas go through the marker splitter."""
        decoded = splitter.decode(json.dumps(events.text("/// START Hero\nfunction Hero() {")))

        assert _types(decoded) == ["content_block_start", "content_block_delta"]

    @pytest.mark.parametrize("frame", [
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_stop", "index": 0},
        {"type": "ping"},
    ])
    def test_model_frames_ignored(self, splitter, frame):
        """Verify frames about the model's own blocks produce no events."""
        assert splitter.decode(json.dumps(frame)) == []

    def test_message_stop_flushes(self, splitter, events):
        """Verify message_stop applies held text before it is passed on."""
        splitter.decode(json.dumps(events.text("/// START Hero\nfunction Hero() { return <p/>; }\n/// END Hero")))

        decoded = splitter.decode(json.dumps(events.message_stop()))

        assert _types(decoded) == ["content_block_stop", "message_stop"]

    def test_delta_without_text_rejected(self, splitter):
        """Verify a text frame missing its text is malformed."""
        with pytest.raises(FrameDecodeError):
            splitter.decode('{"type": "content_block_delta", "delta": {}}')


class TestMarkedTextIngestion:
    """Tests for an ingestor reading marked model text."""

    @pytest.fixture
    def marked_ingestor(self, registry, session, clock):
        return StreamIngestor(registry, session, clock=clock, splitter=MarkerSplitter())

    def test_chunked_component_completes(self, marked_ingestor, registry, events, hero_source):
        """Verify a component streamed as small text chunks ends up complete."""
        for offset in range(0, len(hero_source), 7):
            marked_ingestor.ingest_payload(json.dumps(events.text(hero_source[offset:offset + 7])))
        marked_ingestor.ingest_payload(json.dumps(events.message_stop()))

        record = registry.get("hero_section")
        assert record.status is ComponentStatus.COMPLETE
        assert record.position is Position.HEADER
        assert "/// START" not in record.raw_text
        assert record.cleaned_code.endswith("render(<HeroSection />);")
        assert marked_ingestor.session.state is ConnectionState.IDLE

    def test_malformed_frame_counted(self, marked_ingestor):
        """Verify malformed raw frames are counted and skipped."""
        assert marked_ingestor.ingest_payload('{"type": "content_block_delta", "delt') is None
        assert marked_ingestor.session.health.parse_errors == 1

    def test_reset_drops_open_component(self, marked_ingestor, events):
        """Verify reset() forgets the component the splitter was inside."""
        marked_ingestor.ingest_payload(json.dumps(events.text("/// START Hero\nfunction Hero() {")))

        marked_ingestor.reset()

        assert marked_ingestor.ingest_payload(json.dumps(events.text("}\n/// END Hero\n"))) is None
