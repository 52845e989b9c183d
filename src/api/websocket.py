"""
WebSocket Connection Manager.

Delivers progress notifications to the connected clients of a user.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import WebSocket
from loguru import logger


class ConnectionManager:
    """
    Manages WebSocket connections per user.

    A user may hold several connections (tabs, devices); every message
    addressed to the user goes to all of them.
    """

    def __init__(self) -> None:
        """Initialize the connection manager."""
        self.connections: dict[str, list[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: str) -> None:
        """
        Accept new WebSocket connection.

        Args:
            websocket: The WebSocket connection to accept.
            user_id: Identity of the connected user.
        """
        await websocket.accept()
        self.connections.setdefault(user_id, []).append(websocket)
        logger.info(f"Client connected for user {user_id}. Total: {self.connection_count}")

    def disconnect(self, websocket: WebSocket) -> None:
        """
        Handle WebSocket disconnection.

        Args:
            websocket: The WebSocket connection that disconnected.
        """
        for user_id, sockets in list(self.connections.items()):
            if websocket in sockets:
                sockets.remove(websocket)
                if not sockets:
                    del self.connections[user_id]
        logger.info(f"Client disconnected. Total: {self.connection_count}")

    async def handle_message(self, websocket: WebSocket, data: str) -> None:
        """
        Handle incoming WebSocket message.

        Args:
            websocket: The WebSocket that sent the message.
            data: The raw message data (JSON string).
        """
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Invalid WebSocket message: {data}")
            return

        if message.get("action") == "ping":
            await websocket.send_text(json.dumps({"type": "pong"}))

    async def send_to_user(self, user_id: str, message: dict[str, Any]) -> None:
        """
        Send message to every connection of a user.

        Args:
            user_id: Recipient user.
            message: The message to send.
        """
        sockets = self.connections.get(user_id)
        if not sockets:
            return

        data = json.dumps(message)
        disconnected: list[WebSocket] = []

        for websocket in list(sockets):
            try:
                await websocket.send_text(data)
            except Exception as e:
                logger.error(f"Send error: {e}")
                disconnected.append(websocket)

        # Clean up disconnected clients
        for conn in disconnected:
            self.disconnect(conn)

    @property
    def connection_count(self) -> int:
        """Get the number of active connections."""
        return sum(len(sockets) for sockets in self.connections.values())


# Global instance
ws_manager = ConnectionManager()
