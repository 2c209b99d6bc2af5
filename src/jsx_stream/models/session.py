"""
Stream Session State
====================

Connection lifecycle, health counters and resumption context for one
generation stream.

State Machine:
    IDLE        -> CONNECTING
    CONNECTING  -> STREAMING | ERROR | IDLE
    STREAMING   -> IDLE (message_stop) | ERROR
    ERROR       -> CONNECTING (retry) | DISCONNECTED (retries exhausted) | IDLE
    DISCONNECTED is terminal until reset()

Example:
    session = StreamSession()
    session.transition(ConnectionState.CONNECTING)
    session.transition(ConnectionState.STREAMING)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional


logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    ERROR = "error"
    DISCONNECTED = "disconnected"


_ALLOWED: Dict[ConnectionState, FrozenSet[ConnectionState]] = {
    ConnectionState.IDLE: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({
        ConnectionState.STREAMING,
        ConnectionState.ERROR,
        ConnectionState.IDLE,
    }),
    ConnectionState.STREAMING: frozenset({ConnectionState.IDLE, ConnectionState.ERROR}),
    ConnectionState.ERROR: frozenset({
        ConnectionState.CONNECTING,
        ConnectionState.DISCONNECTED,
        ConnectionState.IDLE,
    }),
    ConnectionState.DISCONNECTED: frozenset(),
}


class SessionStateError(Exception):
    """Raised for a connection state change the state machine does not allow."""


class StreamHealthMetrics:
    """Counters for stream observability."""

    __slots__ = (
        "messages_received",
        "error_count",
        "reconnect_attempts",
        "last_message_time",
        "parse_errors",
    )

    def __init__(self) -> None:
        self.messages_received: int = 0
        self.error_count: int = 0
        self.reconnect_attempts: int = 0
        self.last_message_time: float = 0.0
        self.parse_errors: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "messages_received": self.messages_received,
            "error_count": self.error_count,
            "reconnect_attempts": self.reconnect_attempts,
            "last_message_time": self.last_message_time,
            "parse_errors": self.parse_errors,
        }


@dataclass(frozen=True, slots=True)
class ResumptionHint:
    """
    Context for continuing an interrupted component after reconnect.

    Attributes:
        component_id: Id of the component that was streaming
        component_name: Its name
        partial_code: Raw text received before the interruption
    """

    component_id: str
    component_name: str
    partial_code: str

    def to_request_fields(self) -> dict:
        """Fields merged into the reconnect request body."""
        return {
            "lastComponentName": self.component_name,
            "lastComponentPartialCode": self.partial_code,
        }


StateListener = Callable[[ConnectionState, ConnectionState], None]


class StreamSession:
    """
    Mutable session context shared by the consumer and the ingestor.

    Attributes:
        state: Current connection state
        retry_count: Consecutive failed attempts since the last good connection
        health: Health counters
        resumption_hint: Set while an interrupted component awaits resumption
    """

    def __init__(self) -> None:
        self.state = ConnectionState.IDLE
        self.retry_count = 0
        self.health = StreamHealthMetrics()
        self.resumption_hint: Optional[ResumptionHint] = None
        self._listeners: List[StateListener] = []

    def transition(self, new_state: ConnectionState) -> None:
        """
        Move to `new_state`.

        Raises:
            SessionStateError: If the state machine does not allow the move
        """
        old_state = self.state
        if new_state is old_state:
            return
        if new_state not in _ALLOWED[old_state]:
            raise SessionStateError(
                f"Cannot move connection state from {old_state.value} to {new_state.value}"
            )
        self.state = new_state
        logger.info(f"Connection state: {old_state.value} -> {new_state.value}")
        self._notify(old_state, new_state)

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a state-change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def reset(self) -> None:
        """Return to IDLE with fresh counters and no resumption hint."""
        old_state = self.state
        self.state = ConnectionState.IDLE
        self.retry_count = 0
        self.health = StreamHealthMetrics()
        self.resumption_hint = None
        if old_state is not ConnectionState.IDLE:
            logger.info(f"Connection state reset: {old_state.value} -> idle")
            self._notify(old_state, ConnectionState.IDLE)

    def to_dict(self) -> dict:
        hint = self.resumption_hint
        return {
            "state": self.state.value,
            "retry_count": self.retry_count,
            "health": self.health.to_dict(),
            "resumption_hint": None if hint is None else {
                "component_id": hint.component_id,
                "component_name": hint.component_name,
                "partial_code_length": len(hint.partial_code),
            },
        }

    def _notify(self, old_state: ConnectionState, new_state: ConnectionState) -> None:
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error(f"Connection state listener failed: {e}")
