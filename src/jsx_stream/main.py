"""
jsx-stream-preview Main Application
===================================

FastAPI entry point exposing the component registry to live renderers.

Endpoints:
    GET  /                   - Service information
    GET  /health             - Liveness probe
    GET  /ready              - Readiness probe (stream healthy?)
    GET  /metrics            - Stream health and registry metrics
    GET  /components         - All components in arrival order
    GET  /components/{id}    - One component
    GET  /sections           - Components grouped by page section
    GET  /resume-hint        - Pending resumption context, if any
    POST /generate           - Start a generation request
    POST /reset              - Abandon the stream and clear the registry
    WS   /ws/components      - Registry snapshot pushed on every change
"""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from jsx_stream.config import settings
from jsx_stream.models.session import ConnectionState, StreamSession
from jsx_stream.registry import ComponentRegistry, RegistryChange
from jsx_stream.stream import MarkerSplitter, StreamConsumer, StreamIngestor


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

_registry: Optional[ComponentRegistry] = None
_ingestor: Optional[StreamIngestor] = None
_consumer: Optional[StreamConsumer] = None
_consumer_task: Optional[asyncio.Task] = None
_startup_time: float = 0.0

# Pending pushes per WebSocket client; older ones are dropped when full
WS_QUEUE_SIZE = 16


# =============================================================================
# Getters
# =============================================================================

def get_registry() -> Optional[ComponentRegistry]:
    return _registry

def get_ingestor() -> Optional[StreamIngestor]:
    return _ingestor

def get_consumer() -> Optional[StreamConsumer]:
    return _consumer


# =============================================================================
# Stream Control
# =============================================================================

async def stop_generation() -> None:
    """Abandon the running request, if any, and wait for its task to end."""
    global _consumer, _consumer_task

    if _consumer is not None:
        await _consumer.abandon()

    if _consumer_task is not None:
        try:
            await asyncio.wait_for(_consumer_task, timeout=5.0)
        except asyncio.TimeoutError:
            _consumer_task.cancel()
            try:
                await _consumer_task
            except asyncio.CancelledError:
                pass

    _consumer = None
    _consumer_task = None


async def start_generation(request_body: Dict[str, Any]) -> StreamConsumer:
    """
    Start a new generation request, abandoning any request in flight.

    Args:
        request_body: JSON body POSTed to the generation endpoint

    Returns:
        The consumer running the request.
    """
    global _consumer, _consumer_task

    await stop_generation()

    _consumer = StreamConsumer(
        url=settings.stream.url,
        ingestor=_ingestor,
        request_body=request_body,
        max_retries=settings.stream.max_retries,
        backoff_base_ms=settings.stream.backoff_base_ms,
        backoff_max_ms=settings.stream.backoff_max_ms,
        timeout_seconds=settings.stream.request_timeout_seconds,
    )
    _consumer_task = asyncio.create_task(_consumer.run(), name="stream_consumer")
    return _consumer


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager with graceful shutdown."""
    global _registry, _ingestor, _startup_time

    # Startup
    _startup_time = time.time()
    logger.info(f"Starting {settings.app.name} {settings.app.version}")
    logger.info(f"Stream URL: {settings.stream.url} (format: {settings.stream.format})")

    _registry = ComponentRegistry(capacity=settings.registry.capacity)
    splitter = MarkerSplitter() if settings.stream.format == "marked_text" else None
    _ingestor = StreamIngestor(_registry, StreamSession(), splitter=splitter)

    if settings.stream.autostart:
        await start_generation(settings.stream.request_body)

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")
    await stop_generation()
    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="jsx-stream-preview",
    description="Live preview backend for streamed JSX components",
    version=settings.app.version,
    lifespan=lifespan,
)


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": "jsx-stream-preview",
        "version": settings.app.version,
        "name": settings.app.name,
        "status": "running",
        "stream_url": settings.stream.url,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness probe - is the process alive?

    Always returns 200 if the service is running.
    """
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/ready")
async def ready() -> JSONResponse:
    """
    Readiness probe - can renderers rely on the registry?

    Returns 503 while the stream is in error or disconnected.
    """
    ingestor = get_ingestor()
    state = ingestor.session.state if ingestor else None

    if state in (ConnectionState.ERROR, ConnectionState.DISCONNECTED) or state is None:
        return JSONResponse(
            {
                "status": "not_ready",
                "connection_state": state.value if state else None,
            },
            status_code=503,
        )

    return JSONResponse({
        "status": "ready",
        "connection_state": state.value,
        "components": len(get_registry()),
    })


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Detailed metrics for observability."""
    ingestor = get_ingestor()
    registry = get_registry()
    consumer = get_consumer()

    stream_metrics = {}
    if ingestor is not None:
        stream_metrics = {
            "connection_state": ingestor.session.state.value,
            "retry_count": ingestor.session.retry_count,
            "stream_connected": consumer.connected if consumer else False,
            **ingestor.session.health.to_dict(),
        }

    registry_metrics = {}
    if registry is not None:
        registry_metrics = {f"registry_{k}": v for k, v in registry.metrics().items()}

    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1),
        **stream_metrics,
        **registry_metrics,
    })


@app.get("/components")
async def components() -> JSONResponse:
    """All components in arrival order."""
    return JSONResponse({"components": get_registry().snapshot()})


@app.get("/components/{component_id}")
async def component(component_id: str) -> JSONResponse:
    """A single component by id."""
    record = get_registry().get(component_id)
    if record is None:
        return JSONResponse(
            {"error": f"Unknown component: {component_id}"},
            status_code=404,
        )
    return JSONResponse(record.to_dict())


@app.get("/sections")
async def sections() -> JSONResponse:
    """Components grouped by page section, sections in page order."""
    grouped = get_registry().sections()
    return JSONResponse({
        position.value: [record.to_dict() for record in records]
        for position, records in grouped.items()
    })


@app.get("/resume-hint")
async def resume_hint() -> JSONResponse:
    """Resumption context captured after the last interruption."""
    hint = get_ingestor().session.resumption_hint
    if hint is None:
        return JSONResponse({"hint": None})
    return JSONResponse({
        "hint": {
            "componentId": hint.component_id,
            **hint.to_request_fields(),
        }
    })


@app.post("/generate")
async def generate(request_body: Dict[str, Any]) -> JSONResponse:
    """Start a generation request; any request in flight is abandoned."""
    await start_generation(request_body)
    return JSONResponse({"status": "started", "stream_url": settings.stream.url}, status_code=202)


@app.post("/reset")
async def reset() -> JSONResponse:
    """Abandon the stream and clear every component."""
    await stop_generation()
    cleared = get_ingestor().reset()
    return JSONResponse({"status": "reset", "cleared": cleared})


# =============================================================================
# WebSocket Endpoints
# =============================================================================

def enqueue_change(changes: asyncio.Queue, change: RegistryChange) -> None:
    """Queue a change for a client, dropping the oldest pending one when full."""
    if changes.full():
        # Every push carries the full snapshot, so the newest change is enough
        changes.get_nowait()
    changes.put_nowait(change)


@app.websocket("/ws/components")
async def component_stream(websocket: WebSocket) -> None:
    """WebSocket endpoint pushing the registry snapshot on every change."""
    await websocket.accept()
    logger.info("Client connected to /ws/components")

    registry = get_registry()
    changes: asyncio.Queue = asyncio.Queue(maxsize=WS_QUEUE_SIZE)

    async def push_changes() -> None:
        while True:
            change = await changes.get()
            await websocket.send_json({
                "change": change.kind,
                "componentId": change.component_id,
                "components": registry.snapshot(),
            })

    async def receive_until_closed() -> None:
        # Clients only listen; reading is how a disconnect is noticed
        while True:
            await websocket.receive_text()

    unsubscribe = registry.subscribe(lambda change: enqueue_change(changes, change))
    tasks: List[asyncio.Task] = []
    try:
        await websocket.send_json({"components": registry.snapshot()})
        tasks = [
            asyncio.create_task(push_changes(), name="ws_push"),
            asyncio.create_task(receive_until_closed(), name="ws_receive"),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning(f"WebSocket {task.get_name()} failed: {error}")
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f"WebSocket error: {e}")
    finally:
        unsubscribe()
        for task in tasks:
            task.cancel()
        logger.info("Client disconnected from /ws/components")


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    # Cloud Run uses PORT env var
    port = int(os.environ.get("PORT", settings.server.port))

    uvicorn.run(
        "jsx_stream.main:app",
        host=settings.server.host,
        port=port,
        reload=False,
    )
