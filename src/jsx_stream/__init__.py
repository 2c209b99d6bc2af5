"""
jsx-stream-preview
==================

Live preview backend for streamed, LLM-generated JSX components.

The service consumes a token-by-token SSE stream of component code and
keeps, for every component, a version of its code that is always
syntactically closed and ready to render.

Components:
    - repair: balance tracking, repair, extraction and cleaning
    - registry: ordered, bounded store of component records
    - stream: SSE parsing, event ingestion and the reconnecting consumer
    - models: component records, event schema and session state

Example:
    from jsx_stream.repair import build_preview

    build_preview("function Hero() {\\n  return <h1>Hel").code

    # The service is started via the FastAPI application
    # See main.py for entry point
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
