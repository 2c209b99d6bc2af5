"""
Component Models
================

Registry-side representation of a streamed component.

Core Concepts:
    - ComponentId: stable key derived from the component name
    - Position: page section the component belongs to
    - ComponentStatus: Streaming -> Complete | Errored
    - ComponentRecord: immutable snapshot, replaced wholesale on every change

Status Transitions:
    STREAMING -> STREAMING   (delta appended)
    STREAMING -> COMPLETE    (stop with at least one definition)
    STREAMING -> ERRORED     (stop without definitions, or upstream error)

A record in a terminal status is never modified again; a new start event
for the same id creates a new record with a new sequence number.
"""

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple


logger = logging.getLogger(__name__)


_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def component_id_from_name(name: str) -> str:
    """
    Derive a component id from its name.

    Lower-cases the name and replaces runs of non-alphanumerics with "_".

    Example:
        component_id_from_name("Hero Section")  # 'hero_section'
    """
    normalized = _NON_ALNUM.sub("_", name.lower()).strip("_")
    return normalized or "component"


class InvalidTransitionError(Exception):
    """Raised when a record would leave a terminal status."""

    def __init__(self, component_id: str, current: "ComponentStatus", requested: "ComponentStatus") -> None:
        self.component_id = component_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Component '{component_id}' cannot move from {current.value} to {requested.value}"
        )


class Position(str, Enum):
    """
    Page section a component is placed in.

    Sections render in declaration order: header, main, footer, layout.
    """

    HEADER = "header"
    MAIN = "main"
    FOOTER = "footer"
    LAYOUT = "layout"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Position":
        """Parse a position label, falling back to MAIN for unknown values."""
        if isinstance(value, Position):
            return value
        label = (value or "").strip().lower()
        if label in ("root", "root/layout"):
            return cls.LAYOUT
        try:
            return cls(label)
        except ValueError:
            logger.warning(f"Unknown position '{value}', using 'main'")
            return cls.MAIN


class ComponentStatus(str, Enum):
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self is not ComponentStatus.STREAMING


@dataclass(frozen=True, slots=True)
class ComponentRecord:
    """
    Immutable snapshot of one component.

    Attributes:
        id: Component id
        name: Component name as announced by the stream
        position: Page section
        sequence: Arrival order, assigned when the record is (re)started
        raw_buffer: Every delta fragment received, in order
        cleaned_code: Renderable code ("" while nothing renders, None if errored)
        status: Lifecycle status
        last_updated: Wall-clock time of the last change
        revision: Registry write counter at the last upsert
        error: Error description for errored records
    """

    id: str
    name: str
    position: Position
    sequence: int
    raw_buffer: Tuple[str, ...] = ()
    cleaned_code: Optional[str] = ""
    status: ComponentStatus = ComponentStatus.STREAMING
    last_updated: float = 0.0
    revision: int = 0
    error: Optional[str] = None

    @property
    def raw_text(self) -> str:
        """Concatenation of all received fragments."""
        return "".join(self.raw_buffer)

    def check_transition(self, requested: ComponentStatus) -> None:
        """Raise InvalidTransitionError unless `requested` may follow the current status."""
        if self.status.is_terminal:
            raise InvalidTransitionError(self.id, self.status, requested)

    def appended(self, fragment: str, cleaned_code: str, now: float) -> "ComponentRecord":
        """Return a copy with `fragment` appended and code replaced."""
        self.check_transition(ComponentStatus.STREAMING)
        return replace(
            self,
            raw_buffer=self.raw_buffer + (fragment,),
            cleaned_code=cleaned_code,
            last_updated=now,
        )

    def finished(
        self,
        status: ComponentStatus,
        cleaned_code: Optional[str],
        now: float,
        error: Optional[str] = None,
    ) -> "ComponentRecord":
        """Return a copy moved to a terminal status."""
        self.check_transition(status)
        return replace(
            self,
            status=status,
            cleaned_code=cleaned_code,
            last_updated=now,
            error=error,
        )

    def to_dict(self) -> dict:
        """Renderer-facing view."""
        return {
            "id": self.id,
            "name": self.name,
            "position": self.position.value,
            "cleanedCode": self.cleaned_code,
            "status": self.status.value,
        }
