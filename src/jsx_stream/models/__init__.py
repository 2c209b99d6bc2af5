"""
Data Models
===========

Typed models shared by the repair, registry and stream layers.

Models:
    Component:
        - ComponentRecord: Immutable registry snapshot of one component
        - ComponentStatus: STREAMING, COMPLETE, ERRORED
        - Position: header, main, footer, layout

    Events:
        - StreamEvent: Discriminated union of SSE event payloads
        - parse_event: Validate a decoded frame

    Session:
        - ConnectionState: Connection lifecycle states
        - StreamSession: State, retry counter, health and resumption hint
        - ResumptionHint: Context for resuming an interrupted component
"""

from jsx_stream.models.component import (
    ComponentRecord,
    ComponentStatus,
    InvalidTransitionError,
    Position,
    component_id_from_name,
)
from jsx_stream.models.events import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    MessageStart,
    MessageStop,
    StreamError,
    StreamEvent,
    parse_event,
)
from jsx_stream.models.session import (
    ConnectionState,
    ResumptionHint,
    SessionStateError,
    StreamHealthMetrics,
    StreamSession,
)

__all__ = [
    # Component
    "ComponentRecord",
    "ComponentStatus",
    "InvalidTransitionError",
    "Position",
    "component_id_from_name",
    # Events
    "ContentBlockStart",
    "ContentBlockDelta",
    "ContentBlockStop",
    "MessageStart",
    "MessageStop",
    "StreamError",
    "StreamEvent",
    "parse_event",
    # Session
    "ConnectionState",
    "ResumptionHint",
    "SessionStateError",
    "StreamHealthMetrics",
    "StreamSession",
]
