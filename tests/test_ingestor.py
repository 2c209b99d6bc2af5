"""
Stream Ingestor Tests
=====================

Tests for applying stream events to the registry.
"""

import json

import pytest

from jsx_stream.models.component import ComponentStatus, Position
from jsx_stream.models.session import ConnectionState, ResumptionHint
from jsx_stream.stream import StreamIngestor, UpstreamError


def _feed(ingestor, *events):
    for event in events:
        ingestor.ingest_payload(json.dumps(event))


class TestComponentLifecycle:
    """Tests for start, delta and stop handling."""

    def test_start_creates_streaming_record(self, ingestor, registry, events):
        """Verify a start event registers an empty streaming record."""
        _feed(ingestor, events.start("Hero", "header"))

        record = registry.get("hero")
        assert record.status is ComponentStatus.STREAMING
        assert record.position is Position.HEADER
        assert record.cleaned_code == ""
        assert ingestor.active_component_id == "hero"
        assert ingestor.session.state is ConnectionState.STREAMING

    def test_deltas_accumulate(self, ingestor, registry, events):
        """Verify the raw buffer is the concatenation of all deltas."""
        fragments = ["function Hero() {\n", "  return <h1>", "Hel", "lo</h1>;\n}"]
        _feed(ingestor, events.start("Hero"), *[events.delta("hero", f) for f in fragments])

        record = registry.get("hero")
        assert record.raw_text == "".join(fragments)
        assert record.raw_buffer == tuple(fragments)
        assert record.cleaned_code.endswith("render(<Hero />);")

    def test_partial_delta_renders(self, ingestor, registry, events):
        """Verify cleaned code is updated after every delta."""
        _feed(
            ingestor,
            events.start("Hero"),
            events.delta("hero", "function Hero() {\n return (\n <div>\n <h1>Hi"),
        )

        assert registry.get("hero").cleaned_code == (
            "function Hero() {\n return (\n <div>\n <h1>Hi</h1></div>);}\n\nrender(<Hero />);"
        )

    def test_empty_delta_is_skipped(self, ingestor, registry, events):
        """Verify empty fragments do not publish an update."""
        _feed(ingestor, events.start("Hero"))
        before = registry.get("hero")
        _feed(ingestor, events.delta("hero", ""))

        assert registry.get("hero") is before

    def test_stop_completes_record(self, ingestor, registry, events):
        """Verify stop with a definition completes the record."""
        _feed(
            ingestor,
            events.start("Hero"),
            events.delta("hero", "function Hero() { return <h1>Hi</h1>; }"),
            events.stop("hero"),
        )

        record = registry.get("hero")
        assert record.status is ComponentStatus.COMPLETE
        assert record.cleaned_code == "function Hero() { return <h1>Hi</h1>; }\n\nrender(<Hero />);"
        assert ingestor.active_component_id is None

    def test_stop_without_definition_errors(self, ingestor, registry, events):
        """Verify stop without a definition marks the record errored."""
        _feed(
            ingestor,
            events.start("Hero"),
            events.delta("hero", "const notAComponent = 1;"),
            events.stop("hero"),
        )

        record = registry.get("hero")
        assert record.status is ComponentStatus.ERRORED
        assert record.cleaned_code is None
        assert record.error == "no component definition found"

    def test_incomplete_stop_is_logged(self, ingestor, registry, events, caplog):
        """Verify isComplete=false is reported but the definition still counts."""
        _feed(
            ingestor,
            events.start("Hero"),
            events.delta("hero", "function Hero() { return <h1>Hi</h1>; }"),
            events.stop("hero", is_complete=False),
        )

        assert registry.get("hero").status is ComponentStatus.COMPLETE
        assert "incomplete" in caplog.text

    def test_components_listed_in_order(self, ingestor, registry, events):
        """Verify sequential components keep their arrival order."""
        for name in ("Header", "Footer"):
            component_id = name.lower()
            _feed(
                ingestor,
                events.start(name),
                events.delta(component_id, f"function {name}() {{ return <div/>; }}"),
                events.stop(component_id),
            )

        records = registry.list_ordered()
        assert [r.name for r in records] == ["Header", "Footer"]
        assert all(r.status is ComponentStatus.COMPLETE for r in records)

    def test_restart_after_completion(self, ingestor, registry, events):
        """Verify a new start for a finished id creates a fresh record."""
        _feed(
            ingestor,
            events.start("Hero"),
            events.delta("hero", "function Hero() { return <h1/>; }"),
            events.stop("hero"),
        )
        first = registry.get("hero")
        _feed(ingestor, events.start("Hero"))

        restarted = registry.get("hero")
        assert restarted.status is ComponentStatus.STREAMING
        assert restarted.sequence > first.sequence
        assert restarted.raw_buffer == ()

    def test_delta_for_unknown_component_ignored(self, ingestor, registry, events):
        """Verify deltas without a start are dropped."""
        _feed(ingestor, events.delta("ghost", "function Ghost() {}"))

        assert "ghost" not in registry


class TestMalformedFrames:
    """Tests for malformed frame handling."""

    def test_malformed_frame_does_not_change_result(self, registry, session, clock, events):
        """Verify a malformed frame between deltas leaves the result unchanged."""
        fragments = ["function Hero() {\n  return <h1>", "Hello</h1>;\n}"]

        clean_ingestor = StreamIngestor(registry, session, clock=clock)
        _feed(clean_ingestor, events.start("Hero"), events.delta("hero", fragments[0]))
        clean_ingestor.ingest_payload('{"type": "content_block_delta", "metad')
        _feed(clean_ingestor, events.delta("hero", fragments[1]))
        with_garbage = registry.get("hero").cleaned_code

        from jsx_stream.registry import ComponentRegistry

        reference = ComponentRegistry()
        reference_ingestor = StreamIngestor(reference, clock=clock)
        _feed(reference_ingestor, events.start("Hero"), *[events.delta("hero", f) for f in fragments])

        assert with_garbage == reference.get("hero").cleaned_code
        assert session.health.parse_errors == 1

    def test_handshake_is_not_an_event(self, ingestor, events):
        """Verify the connection handshake is skipped silently."""
        assert ingestor.ingest_payload('{"connected": true}') is None
        assert ingestor.session.health.parse_errors == 0
        assert ingestor.session.health.messages_received == 0


class TestErrorsAndSession:
    """Tests for error events and session handling."""

    def test_component_error(self, ingestor, registry, events):
        """Verify an error with a component id errors that component."""
        _feed(ingestor, events.start("Hero"), events.error("model refused", component_id="hero"))

        record = registry.get("hero")
        assert record.status is ComponentStatus.ERRORED
        assert record.error == "model refused"
        assert ingestor.active_component_id is None

    def test_stream_error_raises(self, ingestor, events):
        """Verify an error without a component id is raised for the consumer."""
        with pytest.raises(UpstreamError) as excinfo:
            _feed(ingestor, events.error("overloaded", retryable=False, code="overloaded_error"))

        assert not excinfo.value.retryable
        assert excinfo.value.code == "overloaded_error"

    def test_message_stop_ends_message(self, ingestor, registry, events):
        """Verify events after message_stop are ignored until begin()."""
        _feed(ingestor, events.start("Hero"), events.message_stop(), events.start("Late"))

        assert ingestor.session.state is ConnectionState.IDLE
        assert "late" not in registry

        ingestor.begin()
        _feed(ingestor, events.start("Late"))
        assert "late" in registry

    def test_transport_error_captures_hint(self, ingestor, registry, events):
        """Verify an interruption records the active component as a hint."""
        _feed(ingestor, events.start("Hero"), events.delta("hero", "function Hero() {"))

        hint = ingestor.handle_transport_error(ConnectionError("reset"))

        assert hint == ResumptionHint("hero", "Hero", "function Hero() {")
        assert ingestor.session.state is ConnectionState.ERROR
        assert ingestor.session.health.error_count == 1

    def test_resume_keeps_buffer(self, ingestor, registry, events):
        """Verify a restart of the hinted component continues its buffer."""
        _feed(ingestor, events.start("Hero"), events.delta("hero", "function Hero() {\n  return <h1>Hel"))
        ingestor.handle_transport_error(ConnectionError("reset"))
        sequence = registry.get("hero").sequence

        _feed(
            ingestor,
            events.start("Hero"),
            events.delta("hero", "lo</h1>;\n}"),
            events.stop("hero"),
        )

        record = registry.get("hero")
        assert record.sequence == sequence
        assert record.raw_text == "function Hero() {\n  return <h1>Hello</h1>;\n}"
        assert record.status is ComponentStatus.COMPLETE
        assert ingestor.session.resumption_hint is None

    def test_reset_clears_everything(self, ingestor, registry, events):
        """Verify reset() clears the registry and the session."""
        _feed(ingestor, events.start("Hero"), events.delta("hero", "function Hero() {"))
        ingestor.handle_transport_error(ConnectionError("reset"))

        assert ingestor.reset() == 1
        assert len(registry) == 0
        assert ingestor.session.state is ConnectionState.IDLE
        assert ingestor.session.resumption_hint is None
