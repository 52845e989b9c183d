"""
Embellishment notification API.

WebSocket delivery of task progress.
"""

from src.api.main import app
from src.api.websocket import ConnectionManager, ws_manager

__all__ = ["app", "ConnectionManager", "ws_manager"]
