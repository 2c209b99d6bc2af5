"""
Repair Module
=============

Keeps partially streamed JSX syntactically closed.

    - tracker: lexical nesting tracker (tags, braces, strings, comments)
    - extractor: closes unbalanced prefixes and extracts definitions
    - cleaner: strips markers, imports and exports; appends render call
    - preview: buffer -> renderable code pipeline

Example:
    from jsx_stream.repair import build_preview

    build = build_preview("function Hero() {\\n  return <h1>Hi", streaming=True)
    build.code
"""

from jsx_stream.repair.tracker import BalanceState, BalanceTracker, is_balanced, scan
from jsx_stream.repair.extractor import (
    ExtractedDefinition,
    RepairResult,
    close_unbalanced,
    extract_definitions,
    split_top_level,
)
from jsx_stream.repair.cleaner import clean, parse_marker, strip_markers
from jsx_stream.repair.preview import PreviewBuild, build_preview


__all__ = [
    "BalanceState",
    "BalanceTracker",
    "is_balanced",
    "scan",
    "ExtractedDefinition",
    "RepairResult",
    "close_unbalanced",
    "extract_definitions",
    "split_top_level",
    "clean",
    "parse_marker",
    "strip_markers",
    "PreviewBuild",
    "build_preview",
]
