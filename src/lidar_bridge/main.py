"""
LidarBridge Main Application
============================

FastAPI entry point for the ZeroMQ -> WebSocket LIDAR bridge.

Endpoints:
    GET  /           - Client application (index.html)
    GET  /health     - Liveness probe (upstream flag + consumer count)
    GET  /metrics    - Subscriber and fan-out counters
    WS   /ws/scans   - Push channel (status, lidar_scan events)
    GET  /<file>     - Static client assets
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from lidar_bridge.bridge import LidarBridge
from lidar_bridge.config import Settings, settings
from lidar_bridge.fanout import ConsumerChannel


logger = logging.getLogger(__name__)


# =============================================================================
# Consumer Sessions
# =============================================================================

async def _pump(websocket: WebSocket, channel: ConsumerChannel) -> None:
    """Drain a consumer channel onto its WebSocket."""
    async for message in channel:
        if isinstance(message, bytes):
            await websocket.send_bytes(message)
        else:
            await websocket.send_text(message)


async def _drain_incoming(websocket: WebSocket) -> None:
    """Discard client messages until the client disconnects."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def serve_consumer(websocket: WebSocket, bridge: LidarBridge) -> None:
    """
    Run one consumer session.

    The session ends when the client disconnects, when sending fails, or
    when the hub closes the channel on shutdown (after queued messages
    have been delivered).
    """
    await websocket.accept()
    channel = bridge.hub.join()
    consumer_id = channel.consumer_id

    sender = asyncio.create_task(_pump(websocket, channel), name=f"{consumer_id}_send")
    receiver = asyncio.create_task(_drain_incoming(websocket), name=f"{consumer_id}_recv")

    try:
        done, pending = await asyncio.wait(
            [sender, receiver],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, WebSocketDisconnect):
                pass
        for task in done:
            error = task.exception()
            if error and not isinstance(error, WebSocketDisconnect):
                logger.warning(f"Consumer {consumer_id} session error: {error}")

        if sender in done and receiver not in done:
            # Channel closed by the hub: shutting down
            try:
                await websocket.close(code=1001)
            except RuntimeError:
                pass
    finally:
        bridge.hub.leave(consumer_id)


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    bridge: Optional[LidarBridge] = None,
    app_settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        bridge: Bridge to serve. Built from settings at startup if None.
        app_settings: Settings to use. The global settings if None.

    Returns:
        Configured FastAPI application
    """
    cfg = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan manager with graceful shutdown."""
        active = bridge or LidarBridge.from_settings(cfg)
        app.state.bridge = active

        logger.info(f"Starting {cfg.bridge.name} {cfg.bridge.version}")
        logger.info(f"Upstream endpoint: {cfg.upstream.endpoint}")
        await active.start()

        yield

        logger.info("Shutting down gracefully...")
        await active.stop()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="LidarBridge",
        description="Real-time ZeroMQ to WebSocket bridge for LIDAR scans",
        version=cfg.bridge.version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.server.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    static_dir = Path(cfg.server.static_dir)

    # =========================================================================
    # HTTP Endpoints
    # =========================================================================

    @app.get("/", include_in_schema=False)
    async def index():
        """Client application entry point."""
        index_file = static_dir / "index.html"
        if not index_file.is_file():
            return JSONResponse({"error": "index.html not found"}, status_code=404)
        return FileResponse(index_file)

    @app.get("/health")
    async def health() -> JSONResponse:
        """
        Liveness probe.

        Always 200 while the process is up; upstream failures show up as
        zmq_connected=false.
        """
        active: LidarBridge = app.state.bridge
        return JSONResponse(active.health.get_health().model_dump())

    @app.get("/metrics")
    async def metrics() -> JSONResponse:
        """Detailed metrics for observability."""
        active: LidarBridge = app.state.bridge
        return JSONResponse(active.get_stats())

    # =========================================================================
    # WebSocket Endpoints
    # =========================================================================

    @app.websocket(cfg.server.ws_path)
    async def scan_stream(websocket: WebSocket) -> None:
        """WebSocket push channel for scans."""
        await serve_consumer(websocket, app.state.bridge)

    # Static assets last, so API routes win
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir), name="static")
    else:
        logger.warning(f"Static directory not found: {static_dir}")

    return app


app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================

def main() -> None:
    """
    Run the bridge under uvicorn.

    SIGINT and SIGTERM both trigger uvicorn's graceful shutdown, which runs
    the lifespan shutdown (LidarBridge.stop) before the process exits.
    """
    import uvicorn

    logger.info(f"LIDAR Bridge Server running on http://localhost:{settings.server.port}")
    logger.info("Press Ctrl+C to stop")

    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.logging.level.lower(),
        timeout_graceful_shutdown=int(settings.upstream.close_timeout_seconds) + 1,
        reload=False,
    )


if __name__ == "__main__":
    main()
