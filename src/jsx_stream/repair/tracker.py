"""
Balance Tracker
===============

Lexical nesting scanner for streamed JSX source.

The tracker walks a text buffer once and keeps a stack of the constructs
that are still open: JSX elements, braces, parentheses, brackets and
template literals. It also knows whether the scan position sits inside a
string, a comment, an unfinished tag head or an unfinished closing tag.

Lexing is context sensitive. In code and tag heads quotes delimit strings;
in JSX children text they are plain characters. A "<" opens an element only
where an expression can start.

Design Rules:
    - Never raises; unmatched closing tokens become BalanceWarnings
    - Self-closing tags and void elements never leave a frame behind
    - Frames are reported innermost first
    - Does NOT parse JavaScript, only tracks nesting

Example:
    from jsx_stream.repair.tracker import scan

    state = scan("function Hero() {\\n  return (\\n    <div>")
    state.closers()   # '</div>);}'
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Tuple


logger = logging.getLogger(__name__)


VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img",
    "input", "link", "meta", "source", "track", "wbr",
})

# Last significant token values. Single characters are stored as-is.
_WORD = "w"
_OPERAND = "a"
_ARROW = "=>"

# Tokens after which "<" starts an element instead of comparing
_JSX_LEAD = frozenset({"(", ",", "=", ":", "?", "&", "|", "{", "}", "[", "!", ";", _ARROW})
_JSX_LEAD_WORDS = frozenset({"return", "yield", "default", "case", "else", "do", "await"})

# Keywords whose parenthesised header is followed by a statement
_KEYWORD_PARENS = frozenset({"if", "while", "for", "switch", "catch", "with"})
_GROUP_PARENS = frozenset({
    "typeof", "void", "await", "yield", "case", "in", "of",
    "instanceof", "new", "delete", "else", "do",
})

# Tokens after which "{" opens a statement block
_BLOCK_LEAD = frozenset({")", "{", "}", ";", _ARROW})
_BLOCK_LEAD_WORDS = frozenset({"else", "try", "finally", "do"})

_TAG_NAME_EXTRA = frozenset("_$.:-")
_TOP_LEVEL = -1


class FrameKind(str, Enum):
    """Kind of an open nesting construct."""

    TAG = "tag"
    BRACE = "brace"
    PAREN = "paren"
    BRACKET = "bracket"
    TEMPLATE = "template"


class FrameRole(str, Enum):
    """
    What a brace or paren frame is used for.

    Roles decide how repair closes a frame and which frames can be
    rolled back to their last complete statement.
    """

    BLOCK = "block"
    OBJECT = "object"
    EXPRESSION = "expression"   # JSX {...} container or attribute value
    SUBSTITUTION = "substitution"  # ${...} inside a template literal
    CALL = "call"
    GROUP = "group"
    RETURN = "return"
    KEYWORD = "keyword"


@dataclass(frozen=True, slots=True)
class Frame:
    """
    One open construct on the tracker stack.

    Attributes:
        kind: Frame kind
        start: Offset of the opening token
        name: Tag name for TAG frames ("" for fragments)
        role: Usage of brace and paren frames
        head: True while a tag's attribute list is still open
    """

    kind: FrameKind
    start: int
    name: Optional[str] = None
    role: Optional[FrameRole] = None
    head: bool = False

    @property
    def closer(self) -> str:
        """Text that closes this frame."""
        if self.kind is FrameKind.TAG:
            return f"</{self.name}>"
        if self.kind is FrameKind.BRACE:
            return "}"
        if self.kind is FrameKind.PAREN:
            if self.role is FrameRole.RETURN:
                return ");"
            if self.role is FrameRole.KEYWORD:
                return ") {}"
            return ")"
        if self.kind is FrameKind.BRACKET:
            return "]"
        return "`"

    @property
    def is_code(self) -> bool:
        """Whether the frame's content is lexed as JavaScript."""
        return self.kind in (FrameKind.BRACE, FrameKind.PAREN, FrameKind.BRACKET)


@dataclass(frozen=True, slots=True)
class BalanceWarning:
    """A closing token that matched nothing and was ignored."""

    offset: int
    token: str
    message: str


class TrackerEvent(NamedTuple):
    """A frame pushed or popped by a single tracker step."""

    action: str  # "push" | "pop"
    frame: Frame


@dataclass(frozen=True)
class BalanceState:
    """
    Snapshot of the tracker after scanning a buffer.

    Attributes:
        frames: Open frames, innermost first
        length: Length of the scanned text
        string_quote: Quote character of an open string, if any
        comment: "line" or "block" while inside a comment
        comment_start: Offset where the open comment begins
        closing_tag_start: Offset of an unfinished "</name" token
        void_tags: Offsets of ">" ending void elements written without "/"
        boundaries: Block frame start -> offset after its last complete statement
        jsx_statements: Block frame starts whose current statement contains JSX
        ternaries: Frame start (-1 for top level) -> unmatched "?" count
        jsx_seen: Whether any JSX element was opened
        last_token: Last significant code token
        last_token_end: Offset just past the last significant code token
        warnings: Unmatched closing tokens
    """

    frames: Tuple[Frame, ...]
    length: int
    string_quote: Optional[str] = None
    comment: Optional[str] = None
    comment_start: Optional[int] = None
    closing_tag_start: Optional[int] = None
    void_tags: Tuple[int, ...] = ()
    boundaries: Dict[int, int] = field(default_factory=dict)
    jsx_statements: FrozenSet[int] = frozenset()
    ternaries: Dict[int, int] = field(default_factory=dict)
    jsx_seen: bool = False
    last_token: Optional[str] = None
    last_token_end: Optional[int] = None
    warnings: Tuple[BalanceWarning, ...] = ()

    @property
    def depth(self) -> int:
        return len(self.frames)

    @property
    def innermost(self) -> Optional[Frame]:
        return self.frames[0] if self.frames else None

    @property
    def in_string(self) -> bool:
        return self.string_quote is not None

    @property
    def in_comment(self) -> bool:
        return self.comment is not None

    @property
    def in_template(self) -> bool:
        top = self.innermost
        return top is not None and top.kind is FrameKind.TEMPLATE

    @property
    def in_tag_head(self) -> bool:
        return any(frame.head for frame in self.frames)

    @property
    def in_closing_tag(self) -> bool:
        return self.closing_tag_start is not None

    @property
    def is_balanced(self) -> bool:
        """True when nothing is left open."""
        return (
            not self.frames
            and self.string_quote is None
            and self.comment is None
            and self.closing_tag_start is None
        )

    def closers(self) -> str:
        """Closing text for every open frame, innermost first."""
        parts = []
        for frame in self.frames:
            parts.append(" : null" * self.ternaries.get(frame.start, 0))
            parts.append(frame.closer)
        parts.append(" : null" * self.ternaries.get(_TOP_LEVEL, 0))
        return "".join(parts)


class BalanceTracker:
    """
    Incremental nesting tracker over a fixed text.

    Callers that only need the final state use scan(). Callers that need to
    watch frames open and close (definition extraction) drive the tracker
    with step() and inspect the returned TrackerEvent.

    Attributes:
        text: Text being scanned
        pos: Offset of the next unconsumed character

    Example:
        tracker = BalanceTracker(source)
        while not tracker.done:
            event = tracker.step()
            if event and event.action == "pop":
                ...
    """

    def __init__(self, text: str, start: int = 0) -> None:
        self.text = text
        self.pos = start

        self._stack: List[Frame] = []
        self._quote: Optional[str] = None
        self._comment: Optional[str] = None
        self._comment_start: Optional[int] = None
        self._closing_start: Optional[int] = None

        self._last_sig: Optional[str] = None
        self._last_word: Optional[str] = None
        self._last_sig_end: Optional[int] = None

        self._void_tags: List[int] = []
        self._boundaries: Dict[int, int] = {}
        self._jsx_blocks: set = set()
        self._ternaries: Dict[int, int] = {}
        self._jsx_seen = False
        self._warnings: List[BalanceWarning] = []

    # -------------------------------------------------------------------------
    # Public state
    # -------------------------------------------------------------------------

    @property
    def done(self) -> bool:
        return self.pos >= len(self.text)

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def top(self) -> Optional[Frame]:
        return self._stack[-1] if self._stack else None

    @property
    def in_code(self) -> bool:
        """Whether the next character is lexed as JavaScript."""
        if self._quote is not None or self._comment is not None:
            return False
        if self._closing_start is not None:
            return False
        top = self.top
        return top is None or top.is_code

    @property
    def at_top_level(self) -> bool:
        return not self._stack and self.in_code

    @property
    def last_significant(self) -> Optional[str]:
        """Last significant code token ("w" for a word, "a" after an element)."""
        return self._last_sig

    def snapshot(self) -> BalanceState:
        return BalanceState(
            frames=tuple(reversed(self._stack)),
            length=len(self.text),
            string_quote=self._quote,
            comment=self._comment,
            comment_start=self._comment_start,
            closing_tag_start=self._closing_start,
            void_tags=tuple(self._void_tags),
            boundaries=dict(self._boundaries),
            jsx_statements=frozenset(self._jsx_blocks),
            ternaries={k: v for k, v in self._ternaries.items() if v > 0},
            jsx_seen=self._jsx_seen,
            last_token=self._last_sig,
            last_token_end=self._last_sig_end,
            warnings=tuple(self._warnings),
        )

    def run(self, until: Optional[int] = None) -> BalanceState:
        """Scan up to offset `until` (or the end) and return the state."""
        limit = len(self.text) if until is None else min(until, len(self.text))
        while self.pos < limit:
            self.step()
        return self.snapshot()

    def step(self) -> Optional[TrackerEvent]:
        """
        Consume one lexical unit.

        Returns:
            TrackerEvent if a frame was pushed or popped, None otherwise.
        """
        if self.pos >= len(self.text):
            return None
        if self._comment is not None:
            return self._step_comment()
        if self._quote is not None:
            return self._step_string()
        if self._closing_start is not None:
            return self._step_closing_tag()

        top = self.top
        if top is not None and top.kind is FrameKind.TEMPLATE:
            return self._step_template()
        if top is not None and top.kind is FrameKind.TAG:
            if top.head:
                return self._step_tag_head(top)
            return self._step_children()
        return self._step_code()

    # -------------------------------------------------------------------------
    # Stack helpers
    # -------------------------------------------------------------------------

    def _push(self, frame: Frame) -> TrackerEvent:
        self._stack.append(frame)
        if frame.kind is FrameKind.TAG:
            self._jsx_seen = True
            block = self._nearest_block()
            if block is not None:
                self._jsx_blocks.add(block.start)
        elif frame.role is FrameRole.BLOCK:
            self._boundaries[frame.start] = frame.start + 1
        return TrackerEvent("push", frame)

    def _pop(self) -> TrackerEvent:
        frame = self._stack.pop()
        self._ternaries.pop(frame.start, None)
        self._boundaries.pop(frame.start, None)
        self._jsx_blocks.discard(frame.start)
        return TrackerEvent("pop", frame)

    def _nearest_block(self) -> Optional[Frame]:
        for frame in reversed(self._stack):
            if frame.role is FrameRole.BLOCK:
                return frame
        return None

    def _mark_statement_end(self, offset: int) -> None:
        top = self.top
        if top is not None and top.role is FrameRole.BLOCK:
            self._boundaries[top.start] = offset
            self._jsx_blocks.discard(top.start)

    def _warn(self, offset: int, token: str, message: str) -> None:
        self._warnings.append(BalanceWarning(offset, token, message))
        logger.debug(f"Unmatched {token!r} at offset {offset}: {message}")

    def _sig(self, token: str) -> None:
        self._last_sig = token
        self._last_sig_end = self.pos
        self._last_word = None

    # -------------------------------------------------------------------------
    # Lexing modes
    # -------------------------------------------------------------------------

    def _step_comment(self) -> None:
        text, i = self.text, self.pos
        if self._comment == "line":
            if text[i] == "\n":
                self._comment = self._comment_start = None
            self.pos = i + 1
        elif text.startswith("*/", i):
            self._comment = self._comment_start = None
            self.pos = i + 2
        else:
            self.pos = i + 1
        return None

    def _step_string(self) -> None:
        text, i = self.text, self.pos
        ch = text[i]
        if ch == "\\":
            self.pos = min(i + 2, len(text))
        elif ch == self._quote:
            self._quote = None
            self.pos = i + 1
            self._sig(_OPERAND)
        else:
            self.pos = i + 1
        return None

    def _step_template(self) -> Optional[TrackerEvent]:
        text, i = self.text, self.pos
        ch = text[i]
        if ch == "\\":
            self.pos = min(i + 2, len(text))
            return None
        if ch == "`":
            self.pos = i + 1
            self._sig(_OPERAND)
            return self._pop()
        if text.startswith("${", i):
            self.pos = i + 2
            self._sig("{")
            return self._push(Frame(FrameKind.BRACE, i, role=FrameRole.SUBSTITUTION))
        self.pos = i + 1
        return None

    def _step_tag_head(self, top: Frame) -> Optional[TrackerEvent]:
        text, i = self.text, self.pos
        ch = text[i]
        if ch in "\"'":
            self._quote = ch
            self.pos = i + 1
            return None
        if ch == "{":
            self.pos = i + 1
            self._sig("{")
            return self._push(Frame(FrameKind.BRACE, i, role=FrameRole.EXPRESSION))
        if ch == "/":
            nxt = text[i + 1:i + 2]
            if nxt == ">":
                self.pos = i + 2
                return self._close_element()
            if nxt == "/":
                self._comment_start = i
                self._comment = "line"
                self.pos = i + 2
                return None
            if nxt == "*":
                self._comment_start = i
                self._comment = "block"
                self.pos = i + 2
                return None
            self.pos = i + 1
            return None
        if ch == ">":
            self.pos = i + 1
            if top.name in VOID_ELEMENTS:
                self._void_tags.append(i)
                return self._close_element()
            self._stack[-1] = replace(top, head=False)
            return None
        if ch == "<":
            self._warn(i, "<", f"unexpected '<' inside <{top.name}> tag head")
        self.pos = i + 1
        return None

    def _step_children(self) -> Optional[TrackerEvent]:
        text, i = self.text, self.pos
        ch = text[i]
        if ch == "{":
            self.pos = i + 1
            self._sig("{")
            return self._push(Frame(FrameKind.BRACE, i, role=FrameRole.EXPRESSION))
        if ch == "<":
            if text[i + 1:i + 2] == "/":
                self._closing_start = i
                self.pos = i + 2
                return None
            event = self._open_element(i)
            if event is not None:
                return event
            self._warn(i, "<", "literal '<' in JSX text")
        elif ch == "}":
            self._warn(i, "}", "unmatched '}' in JSX text")
        self.pos = i + 1
        return None

    def _step_closing_tag(self) -> Optional[TrackerEvent]:
        text, start = self.text, self._closing_start
        j = self.pos
        while j < len(text) and (text[j].isalnum() or text[j] in _TAG_NAME_EXTRA or text[j].isspace()):
            j += 1
        if j >= len(text):
            self.pos = len(text)
            return None

        self._closing_start = None
        if text[j] != ">":
            self._warn(start, text[start:j + 1], "malformed closing tag")
            self.pos = j
            return None

        self.pos = j + 1
        name = text[start + 2:j].strip()
        top = self.top
        if top is not None and top.kind is FrameKind.TAG and not top.head and top.name == name:
            return self._close_element()
        self._warn(start, f"</{name}>", "closing tag does not match the open element")
        return None

    def _step_code(self) -> Optional[TrackerEvent]:
        text, i = self.text, self.pos
        ch = text[i]
        nxt = text[i + 1:i + 2]

        if ch.isspace():
            self.pos = i + 1
            return None

        if ch.isalnum() or ch in "_$":
            j = i + 1
            while j < len(text) and (text[j].isalnum() or text[j] in "_$"):
                j += 1
            self._last_word = text[i:j]
            self._last_sig = _WORD
            self._last_sig_end = j
            self.pos = j
            return None

        if ch == "/":
            if nxt == "/":
                self._comment_start = i
                self._comment = "line"
                self.pos = i + 2
                return None
            if nxt == "*":
                self._comment_start = i
                self._comment = "block"
                self.pos = i + 2
                return None

        if ch in "\"'":
            self._quote = ch
            self.pos = i + 1
            return None

        if ch == "`":
            self.pos = i + 1
            return self._push(Frame(FrameKind.TEMPLATE, i))

        if ch == "=" and nxt == ">":
            self.pos = i + 2
            self._sig(_ARROW)
            return None

        if ch == "?":
            if nxt in ("?", "."):
                self.pos = i + 2
                self._sig(nxt)
                return None
            key = self.top.start if self._stack else _TOP_LEVEL
            self._ternaries[key] = self._ternaries.get(key, 0) + 1
            self.pos = i + 1
            self._sig("?")
            return None

        if ch == ":":
            key = self.top.start if self._stack else _TOP_LEVEL
            if self._ternaries.get(key, 0) > 0:
                self._ternaries[key] -= 1
            self.pos = i + 1
            self._sig(":")
            return None

        if ch == ";":
            self.pos = i + 1
            self._sig(";")
            self._mark_statement_end(i + 1)
            return None

        if ch == "<" and self._jsx_allowed():
            event = self._open_element(i)
            if event is not None:
                return event

        if ch in "({[":
            return self._open_code_frame(ch, i)

        if ch in ")}]":
            return self._close_code_frame(ch, i)

        self.pos = i + 1
        self._sig(ch)
        return None

    # -------------------------------------------------------------------------
    # Frame openers and closers
    # -------------------------------------------------------------------------

    def _jsx_allowed(self) -> bool:
        if self._last_sig is None:
            return True
        if self._last_sig == _WORD:
            return self._last_word in _JSX_LEAD_WORDS
        return self._last_sig in _JSX_LEAD

    def _open_element(self, i: int) -> Optional[TrackerEvent]:
        text = self.text
        j = i + 1
        if j < len(text) and text[j] == ">":
            self.pos = j + 1
            return self._push(Frame(FrameKind.TAG, i, name=""))

        k = j
        while k < len(text) and (text[k].isalnum() or text[k] in _TAG_NAME_EXTRA):
            k += 1
        name = text[j:k]
        if k < len(text) and (not name or not name[0].isalpha()):
            return None

        self.pos = k
        return self._push(Frame(FrameKind.TAG, i, name=name, head=True))

    def _close_element(self) -> TrackerEvent:
        event = self._pop()
        self._sig(_OPERAND)
        return event

    def _open_code_frame(self, ch: str, i: int) -> TrackerEvent:
        if ch == "(":
            frame = Frame(FrameKind.PAREN, i, role=self._paren_role())
        elif ch == "{":
            frame = Frame(FrameKind.BRACE, i, role=self._brace_role())
        else:
            frame = Frame(FrameKind.BRACKET, i)
        self.pos = i + 1
        self._sig(ch)
        return self._push(frame)

    def _paren_role(self) -> FrameRole:
        if self._last_sig == _WORD:
            if self._last_word == "return":
                return FrameRole.RETURN
            if self._last_word in _KEYWORD_PARENS:
                return FrameRole.KEYWORD
            if self._last_word in _GROUP_PARENS:
                return FrameRole.GROUP
            return FrameRole.CALL
        if self._last_sig in (")", "]"):
            return FrameRole.CALL
        return FrameRole.GROUP

    def _brace_role(self) -> FrameRole:
        if self._last_sig is None or self._last_sig in _BLOCK_LEAD:
            return FrameRole.BLOCK
        if self._last_sig == _WORD and self._last_word in _BLOCK_LEAD_WORDS:
            return FrameRole.BLOCK
        return FrameRole.OBJECT

    def _close_code_frame(self, ch: str, i: int) -> Optional[TrackerEvent]:
        self.pos = i + 1
        expected = {")": FrameKind.PAREN, "}": FrameKind.BRACE, "]": FrameKind.BRACKET}[ch]
        top = self.top
        if top is None or top.kind is not expected:
            self._warn(i, ch, "no matching opener")
            self._sig(ch)
            return None

        event = self._pop()
        self._sig(ch)
        if expected is FrameKind.BRACE and top.role in (FrameRole.BLOCK, FrameRole.OBJECT):
            self._mark_statement_end(i + 1)
        return event


def scan(text: str) -> BalanceState:
    """Scan `text` completely and return the resulting state."""
    return BalanceTracker(text).run()


def is_balanced(text: str) -> bool:
    """
    Syntactic closure check used to validate repaired code.

    True when every frame opened in `text` is closed, no string, comment or
    tag is left open, and no closing token was left unmatched.
    """
    state = scan(text)
    return state.is_balanced and not state.warnings
