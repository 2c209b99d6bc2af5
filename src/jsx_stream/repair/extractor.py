"""
Repair & Extraction
===================

Turns a possibly-truncated JSX buffer into closed, renderable source.

Two layers live here:
    - close_unbalanced(): repairs an arbitrary prefix so that every open
      construct is closed again (tags, braces, parens, strings, comments)
    - extract_definitions(): finds top-level component definitions and
      returns each one as closed source, repaired where it is unfinished

Repair order:
    1. Cut an unfinished tag head or closing tag back to its "<"
    2. Inside a statement block with no JSX in flight, roll back to the
       end of the last complete statement
    3. Close an open string; close an open comment
    4. Drop a trailing comma, put "null" after a dangling operator
    5. Append closers innermost first
    6. Self-close void elements written without "/>"

Design Rules:
    - Never raises on malformed input
    - Closing order is strictly last-opened, first-closed
    - Does NOT evaluate or type-check the code
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from jsx_stream.repair.tracker import (
    BalanceState,
    BalanceTracker,
    BalanceWarning,
    FrameKind,
    FrameRole,
    scan,
)


logger = logging.getLogger(__name__)


# Operators and keywords that need an operand after them
_DANGLING_TAIL = re.compile(
    r"(?:=>|===?|!==?|&&|\|\||\?\?|(?<!\+)\+|(?<!-)-|[*%!~^&|?:=]"
    r"|\.\.\.|(?<![\d.])\."
    r"|\b(?:return|typeof|void|new|delete|in|of|instanceof))\s*$"
)

# Comparison operators; a closed JSX element records an operand instead
_COMPARISON_TOKENS = frozenset("<>")

# Paren/brace roles that cannot be left empty
_NEEDS_OPERAND = frozenset({
    FrameRole.GROUP,
    FrameRole.RETURN,
    FrameRole.KEYWORD,
    FrameRole.SUBSTITUTION,
})

_DEFINITION_START = re.compile(
    r"(?<![\w$.])"
    r"(?:export\s+(?:default\s+)?)?"
    r"(?:"
    r"(?:async\s+)?function\b\s*\*?\s*(?P<fn>[A-Za-z_$][\w$]*)?\s*\("
    r"|(?:const|let|var)\s+(?P<var>[A-Za-z_$][\w$]*)\s*=\s*(?:async\s+)?"
    r"(?P<rhs>function\b|\(|[A-Za-z_$][\w$]*\s*=>|(?:React\.)?(?:memo|forwardRef)\s*\()"
    r")"
)

# Tokens that carry an expression on to the next line
_CONTINUATION_TOKENS = frozenset("=+-*/%&|?:,.(<>![{~^") | {"=>"}
_CONTINUATION_LEAD = re.compile(r"\s*(?:=>|[.?:&|+\-*/%=,])")


@dataclass(frozen=True)
class RepairResult:
    """
    Output of close_unbalanced().

    Attributes:
        text: Repaired, closed text
        closers: Closing sequence that was appended
        truncated_at: Offset the input was cut back to, if any
        warnings: Unmatched closing tokens found in the input
    """

    text: str
    closers: str
    truncated_at: Optional[int] = None
    warnings: Tuple[BalanceWarning, ...] = ()


class DefinitionKind(str, Enum):
    FUNCTION = "function"
    ARROW = "arrow"
    FUNCTION_EXPRESSION = "function_expression"
    WRAPPED = "wrapped"


@dataclass(frozen=True)
class ExtractedDefinition:
    """
    One top-level component definition.

    Attributes:
        name: Declared name
        content: Closed source of the definition
        complete: Natural end reached, or body already renders JSX
        is_streaming: Still being written (streaming mode only)
        kind: Declaration form
        start: Offset of the definition in the scanned text
        end: Offset just past the definition
        natural_end: Whether the source itself closed the definition
    """

    name: str
    content: str
    complete: bool
    is_streaming: bool
    kind: DefinitionKind
    start: int
    end: int
    natural_end: bool

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "complete": self.complete,
            "isStreaming": self.is_streaming,
        }


@dataclass(frozen=True)
class Segment:
    """A top-level slice of source: a definition or other code."""

    text: str
    start: int
    end: int
    definition: Optional[ExtractedDefinition] = None


# =============================================================================
# Repair
# =============================================================================

def close_unbalanced(text: str) -> RepairResult:
    """
    Close every construct left open at the end of `text`.

    Args:
        text: Source prefix, possibly cut mid-token

    Returns:
        RepairResult whose text passes is_balanced() unless the input
        itself contains unmatched closing tokens.
    """
    original_length = len(text)
    state = scan(text)

    while True:
        cut = _unfinished_markup(state)
        if cut is None:
            cut = _rollback_point(text, state)
        if cut is None:
            break
        text = text[:cut]
        state = scan(text)

    truncated_at = len(text) if len(text) < original_length else None

    if state.string_quote is not None:
        body = _drop_dangling_escape(text) + state.string_quote
        trailer = ""
    elif state.comment is not None:
        body = _repair_tail(text[:state.comment_start], state)
        comment = text[state.comment_start:]
        trailer = " " + comment + ("*/" if state.comment == "block" else "\n")
    else:
        body = _repair_tail(text, state)
        trailer = ""

    body = self_close_void_elements(body, state.void_tags)
    closers = state.closers()

    return RepairResult(
        text=body + trailer + closers,
        closers=closers,
        truncated_at=truncated_at,
        warnings=state.warnings,
    )


def self_close_void_elements(text: str, offsets: Tuple[int, ...]) -> str:
    """Insert "/" before each recorded void-element ">"."""
    for offset in sorted(offsets, reverse=True):
        if offset < len(text) and text[offset] == ">":
            text = text[:offset] + "/" + text[offset:]
    return text


def _unfinished_markup(state: BalanceState) -> Optional[int]:
    """Start of the outermost unfinished tag head or closing tag."""
    if state.closing_tag_start is not None:
        return state.closing_tag_start
    heads = [frame.start for frame in state.frames if frame.head]
    return min(heads) if heads else None


def _rollback_point(text: str, state: BalanceState) -> Optional[int]:
    """
    Offset after the last complete statement of the innermost block.

    Only applies when the statement being written contains no JSX, so
    markup keeps streaming in while plain statements appear whole.
    """
    for frame in state.frames:
        if frame.kind is FrameKind.TAG:
            return None
        if frame.role is FrameRole.BLOCK:
            if frame.start in state.jsx_statements:
                return None
            cut = state.boundaries.get(frame.start)
            if cut is None or cut >= len(text) or not text[cut:].strip():
                return None
            return cut
    return None


def _drop_dangling_escape(text: str) -> str:
    stripped = text.rstrip("\\")
    if (len(text) - len(stripped)) % 2:
        return text[:-1]
    return text


def _repair_tail(body: str, state: BalanceState) -> str:
    top = state.innermost
    if top is not None and top.kind is FrameKind.TEMPLATE:
        return _drop_dangling_escape(body)
    if top is not None and top.kind is FrameKind.TAG:
        return body.rstrip()

    # Only whitespace and comments follow the last code token.
    if state.last_token_end is not None and state.last_token_end <= len(body):
        body = body[:state.last_token_end]
    body = body.rstrip()
    if state.last_token == "/" and body.endswith("/"):
        body = body[:-1].rstrip()
    if body.endswith(","):
        body = body[:-1].rstrip()

    if top is not None:
        opener_end = top.start + (2 if top.role is FrameRole.SUBSTITUTION else 1)
        if len(body) == opener_end:
            return body + "null" if top.role in _NEEDS_OPERAND else body

    if state.last_token in _COMPARISON_TOKENS or _DANGLING_TAIL.search(body):
        return body + " null"
    return body


# =============================================================================
# Definition extraction
# =============================================================================

def extract_definitions(
    text: str,
    streaming_mode: bool = False,
) -> Dict[str, ExtractedDefinition]:
    """
    Extract top-level component definitions from `text`.

    Args:
        text: Source buffer, markers already stripped
        streaming_mode: Stop after the first definition still being written

    Returns:
        Definitions keyed by name, in source order.
    """
    return definitions_from_segments(split_top_level(text, streaming_mode), streaming_mode)


def definitions_from_segments(
    segments: List[Segment],
    streaming_mode: bool = False,
) -> Dict[str, ExtractedDefinition]:
    definitions: Dict[str, ExtractedDefinition] = {}
    for segment in segments:
        definition = segment.definition
        if definition is None:
            continue

        existing = definitions.get(definition.name)
        if existing is not None and existing.complete and not definition.complete:
            logger.debug(f"Keeping complete '{definition.name}' over a later partial one")
        else:
            if existing is not None:
                logger.info(f"Duplicate definition '{definition.name}', keeping the later one")
            definitions[definition.name] = definition

        if streaming_mode and definition.is_streaming:
            break
    return definitions


def split_top_level(text: str, streaming_mode: bool = False) -> List[Segment]:
    """
    Split `text` into ordered top-level segments.

    Definition segments carry an ExtractedDefinition; everything between
    them is returned as plain code segments.
    """
    segments: List[Segment] = []
    cursor = 0
    tracker = BalanceTracker(text)

    for match in _DEFINITION_START.finditer(text):
        start = match.start()
        if start < cursor:
            continue

        tracker.run(until=start)
        if tracker.pos != start or not tracker.at_top_level:
            continue

        name = match.group("fn") or match.group("var")
        if not name:
            logger.warning(f"Skipping definition without a name at offset {start}")
            continue

        definition = _measure(text, match, name, streaming_mode)
        if definition is None:
            continue

        if start > cursor:
            segments.append(Segment(text[cursor:start], cursor, start))
        segments.append(Segment(text[start:definition.end], start, definition.end, definition))
        cursor = definition.end
        if cursor >= len(text):
            break
        tracker = BalanceTracker(text, start=cursor)

    if cursor < len(text):
        segments.append(Segment(text[cursor:], cursor, len(text)))
    return segments


def _definition_kind(match: re.Match) -> DefinitionKind:
    rhs = match.group("rhs")
    if rhs is None:
        return DefinitionKind.FUNCTION
    if rhs.startswith("function"):
        return DefinitionKind.FUNCTION_EXPRESSION
    if rhs.startswith("(") or rhs.endswith("=>"):
        return DefinitionKind.ARROW
    return DefinitionKind.WRAPPED


def _continues(text: str, offset: int) -> Optional[bool]:
    """Whether the line after `offset` continues the expression (None if unknown)."""
    rest = text[offset:]
    if not rest.strip():
        return None
    return _CONTINUATION_LEAD.match(rest) is not None


def _skip_semicolon(text: str, end: int) -> int:
    j = end
    while j < len(text) and text[j] in " \t":
        j += 1
    if j < len(text) and text[j] == ";":
        return j + 1
    return end


def _measure(
    text: str,
    match: re.Match,
    name: str,
    streaming_mode: bool,
) -> Optional[ExtractedDefinition]:
    """Scan forward from a definition start and find where it ends."""
    kind = _definition_kind(match)
    start = match.start()
    rhs_start = match.start("rhs") if match.group("rhs") else match.end()
    is_expression = kind is not DefinitionKind.FUNCTION

    tracker = BalanceTracker(text, start=start)
    body_opened = False
    arrow_seen = kind is DefinitionKind.ARROW and match.group("rhs").endswith("=>")
    params_checked = kind is not DefinitionKind.ARROW or arrow_seen
    content_seen = False
    end: Optional[int] = None

    while not tracker.done:
        i = tracker.pos
        ch = text[i]

        if is_expression and tracker.at_top_level and i >= rhs_start:
            if ch == ";":
                end = i + 1
                break
            if ch == "\n" and content_seen and tracker.last_significant not in _CONTINUATION_TOKENS:
                if _continues(text, i) is False:
                    end = i
                    break
            if text.startswith("=>", i):
                arrow_seen = True

        event = tracker.step()
        if i >= rhs_start and not ch.isspace():
            content_seen = True
        if event is None:
            continue

        frame = event.frame
        if event.action == "push" and frame.kind is FrameKind.BRACE and tracker.depth == 1:
            body_opened = True
        elif event.action == "pop" and tracker.depth == 0:
            if kind is DefinitionKind.FUNCTION and frame.kind is FrameKind.BRACE:
                end = _skip_semicolon(text, tracker.pos)
                break
            if not params_checked and frame.kind is FrameKind.PAREN:
                params_checked = True
                rest = text[tracker.pos:].lstrip()
                if rest and not rest.startswith("=>"):
                    return None

    if end is None and is_expression and content_seen:
        state = tracker.snapshot()
        if state.is_balanced and tracker.last_significant not in _CONTINUATION_TOKENS:
            if kind is not DefinitionKind.ARROW or arrow_seen:
                end = len(text)

    if end is not None:
        state = scan(text[start:end])
        content = self_close_void_elements(text[start:end], state.void_tags)
        if is_expression and not content.rstrip().endswith(";"):
            content = content.rstrip() + ";"
        return ExtractedDefinition(
            name=name,
            content=content,
            complete=True,
            is_streaming=False,
            kind=kind,
            start=start,
            end=end,
            natural_end=True,
        )

    content, renderable = _finish_partial(text, match, kind, body_opened, arrow_seen)
    return ExtractedDefinition(
        name=name,
        content=content,
        complete=renderable,
        is_streaming=streaming_mode,
        kind=kind,
        start=start,
        end=len(text),
        natural_end=False,
    )


def _finish_partial(
    text: str,
    match: re.Match,
    kind: DefinitionKind,
    body_opened: bool,
    arrow_seen: bool,
) -> Tuple[str, bool]:
    """Close a definition that runs to the end of the buffer."""
    start = match.start()

    if kind is DefinitionKind.FUNCTION and not body_opened:
        return text[start:match.end()] + ") {}", False
    if kind is DefinitionKind.ARROW and not arrow_seen:
        return text[start:match.start("rhs")] + "() => null;", False
    if kind is DefinitionKind.FUNCTION_EXPRESSION and not body_opened:
        return text[start:match.start("rhs")] + "function () {};", False

    repair = close_unbalanced(text[start:])
    content = repair.text.rstrip()
    if kind is not DefinitionKind.FUNCTION and not content.endswith(";"):
        content += ";"
    return content, scan(content).jsx_seen
