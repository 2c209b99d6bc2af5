"""
Preview Builder
===============

Buffer-to-renderable pipeline used by the stream ingestor.

    raw buffer
        -> strip_markers()
        -> split_top_level()          definitions + other top-level code
        -> definitions_from_segments() repaired definitions
        -> keep finished top-level declarations
        -> clean()

The resulting code is either "" (nothing renderable yet) or closed source
ending in a single render call.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from jsx_stream.repair.cleaner import clean, strip_markers
from jsx_stream.repair.extractor import (
    ExtractedDefinition,
    Segment,
    definitions_from_segments,
    split_top_level,
)
from jsx_stream.repair.tracker import is_balanced


logger = logging.getLogger(__name__)


# Top-level code kept next to the definitions (constants, helpers)
_DECLARATION = re.compile(r"^[ \t]*(?:export\s+)?(?:const|let|var|class)\b", re.MULTILINE)


@dataclass(frozen=True)
class PreviewBuild:
    """
    Renderable snapshot of one component buffer.

    Attributes:
        code: Cleaned source, "" when no definition was found
        definitions: Extracted definitions keyed by name
        primary_name: Component mounted by the render call
        dropped_segments: Top-level code left out because it was unfinished
    """

    code: str
    definitions: Dict[str, ExtractedDefinition] = field(default_factory=dict)
    primary_name: Optional[str] = None
    dropped_segments: Tuple[str, ...] = ()

    @property
    def renderable(self) -> bool:
        return bool(self.code)


def build_preview(
    buffer: str,
    streaming: bool = True,
    preferred_name: Optional[str] = None,
) -> PreviewBuild:
    """
    Build renderable code from a raw component buffer.

    Args:
        buffer: Concatenated deltas, markers included
        streaming: True while more deltas may arrive
        preferred_name: Component to mount when several are defined

    Returns:
        PreviewBuild; code is "" if the buffer holds no definition yet.
    """
    text = strip_markers(buffer)
    segments = split_top_level(text, streaming_mode=streaming)
    definitions = definitions_from_segments(segments, streaming_mode=streaming)
    if not definitions:
        return PreviewBuild(code="")

    parts: List[str] = []
    dropped: List[str] = []
    for index, segment in enumerate(segments):
        if segment.definition is not None:
            if definitions.get(segment.definition.name) is segment.definition:
                parts.append(segment.definition.content)
            continue
        is_last = index == len(segments) - 1
        if _keep_segment(segment, streaming and is_last):
            parts.append(segment.text.strip())
        elif segment.text.strip():
            dropped.append(segment.text)

    if dropped:
        logger.debug(f"Left out {len(dropped)} unfinished top-level segment(s)")

    primary = preferred_name if preferred_name in definitions else None
    if primary is None:
        primary = next((name for name in definitions if name[0].isupper()), None)

    return PreviewBuild(
        code=clean("\n\n".join(parts), primary=primary),
        definitions=definitions,
        primary_name=primary,
        dropped_segments=tuple(dropped),
    )


def _keep_segment(segment: Segment, may_grow: bool) -> bool:
    text = segment.text.strip()
    if not text or not _DECLARATION.search(text):
        return False
    if may_grow and not text.endswith(";"):
        return False
    return is_balanced(text)
