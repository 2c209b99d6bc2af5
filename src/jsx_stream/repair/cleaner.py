"""
Code Cleaner
============

Normalizes repaired component source for a live renderer.

The renderer evaluates code inside a scope that already provides React
and the standard hooks, and mounts whatever is passed to a terminal
render() call. The cleaner therefore:
    - strips code fences and /// START / /// END marker lines
    - drops import statements and export prefixes
    - collapses runs of blank lines
    - appends render(<Primary />); when no render call is present

Design Rules:
    - clean(clean(x)) == clean(x)
    - An existing top-level render( call is never duplicated
    - Does NOT touch anything inside the component bodies

Example:
    from jsx_stream.repair.cleaner import clean

    clean("export default function Hero() { return <h1/>; }")
    # 'function Hero() { return <h1/>; }\\n\\nrender(<Hero />);'
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from jsx_stream.models.component import Position
from jsx_stream.repair.extractor import extract_definitions
from jsx_stream.repair.tracker import BalanceTracker


logger = logging.getLogger(__name__)


_FENCE = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*\n?")
_MARKER_LINE = re.compile(r"^[ \t]*///[ \t]*(?:START|END)\b[^\n]*(?:\n|$)", re.MULTILINE)
_IMPORT_FROM = re.compile(
    r"^[ \t]*import\b[^;'\"]*?\bfrom\s*(['\"])[^'\"\n]*\1[ \t]*;?[ \t]*(?:\n|$)",
    re.MULTILINE,
)
_IMPORT_BARE = re.compile(r"^[ \t]*import\s*(['\"])[^'\"\n]*\1[ \t]*;?[ \t]*(?:\n|$)", re.MULTILINE)
_EXPORT_DEFAULT_NAME = re.compile(
    r"^[ \t]*export\s+default\s+[A-Za-z_$][\w$]*[ \t]*;?[ \t]*(?:\n|$)",
    re.MULTILINE,
)
_EXPORT_PREFIX = re.compile(
    r"^([ \t]*)export\s+(?:default\s+)?(?=(?:async\s+)?function\b|const\b|let\b|var\b|class\b)",
    re.MULTILINE,
)
_BLANK_RUNS = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")
_RENDER_CALL = re.compile(r"^[ \t]*(?P<call>render)\s*\(", re.MULTILINE)

_MARKER = re.compile(
    r"^[ \t]*///[ \t]*(?P<kind>START|END)[ \t]+(?P<name>[A-Za-z_$][\w$]*)"
    r"(?:[ \t]+\[?position=(?P<position>[A-Za-z/]+)\]?)?[ \t]*$"
)


@dataclass(frozen=True)
class Marker:
    """A parsed /// START or /// END annotation line."""

    kind: str  # "START" | "END"
    name: str
    position: Optional[Position] = None


def strip_markers(text: str) -> str:
    """Remove code fences and marker annotation lines."""
    text = _FENCE.sub("", text)
    return _MARKER_LINE.sub("", text)


def parse_marker(line: str) -> Optional[Marker]:
    """
    Parse a marker line such as "/// START Hero position=header".

    Returns:
        Marker, or None when the line is not a well-formed marker.
    """
    match = _MARKER.match(line.rstrip("\r\n"))
    if match is None:
        return None
    position = match.group("position")
    return Marker(
        kind=match.group("kind"),
        name=match.group("name"),
        position=Position.parse(position) if position else None,
    )


def clean(text: str, primary: Optional[str] = None) -> str:
    """
    Normalize source for the renderer.

    Args:
        text: Repaired component source
        primary: Component to mount; defaults to the first capitalised
            top-level definition

    Returns:
        Cleaned source ending in a render call, or "" for empty input.
    """
    text = strip_markers(text)
    text = _IMPORT_FROM.sub("", text)
    text = _IMPORT_BARE.sub("", text)
    text = _EXPORT_DEFAULT_NAME.sub("", text)
    text = _EXPORT_PREFIX.sub(r"\1", text)
    text = _BLANK_RUNS.sub("\n\n", text).strip()

    if not text or _has_render_call(text):
        return text

    name = _primary_component(text, primary)
    if name is None:
        logger.debug("No capitalised component found, skipping render call")
        return text
    return f"{text}\n\nrender(<{name} />);"


def _has_render_call(text: str) -> bool:
    """Whether a top-level statement already calls render()."""
    tracker = BalanceTracker(text)
    for match in _RENDER_CALL.finditer(text):
        start = match.start("call")
        if start < tracker.pos:
            continue
        tracker.run(until=start)
        if tracker.pos == start and tracker.at_top_level:
            return True
    return False


def _primary_component(text: str, preferred: Optional[str]) -> Optional[str]:
    names = list(extract_definitions(text))
    if preferred and preferred in names:
        return preferred
    for name in names:
        if name[0].isupper():
            return name
    return None
