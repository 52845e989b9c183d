"""
Notification API.

FastAPI app delivering embellishment progress to clients over WebSockets.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from loguru import logger

from src import __version__
from src.api.websocket import ws_manager


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """
    Startup and shutdown events.

    Yields:
        None during application runtime.
    """
    logger.info("Starting embellishment notification API...")
    yield
    logger.info("Shutting down embellishment notification API...")


app = FastAPI(
    title="Embellishment Notifications",
    description="Real-time progress for embellishment tasks",
    version=__version__,
    lifespan=lifespan,
)


@app.websocket("/ws/{user_id}")
async def websocket_endpoint(websocket: WebSocket, user_id: str) -> None:
    """
    WebSocket endpoint for progress updates.

    Args:
        websocket: The WebSocket connection.
        user_id: Identity of the connected user.
    """
    await ws_manager.connect(websocket, user_id)
    try:
        while True:
            data = await websocket.receive_text()
            await ws_manager.handle_message(websocket, data)
    except WebSocketDisconnect:
        ws_manager.disconnect(websocket)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """
    Health check endpoint.

    Returns:
        Health status and version.
    """
    return {"status": "healthy", "version": __version__}


@app.get("/api/ws-status")
async def ws_status() -> dict[str, int]:
    """
    Get WebSocket connection status.

    Returns:
        Number of active connections.
    """
    return {"active_connections": ws_manager.connection_count}
