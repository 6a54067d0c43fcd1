"""WebSocket support for pushing monitor status changes."""

import json
import asyncio
from typing import Set, Dict, Any, Optional
from datetime import datetime, timedelta
import weakref

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field
import structlog

from ...models import MonitorStatus

logger = structlog.get_logger(__name__)


class WebSocketMessage(BaseModel):
    """Base WebSocket message structure."""

    type: str
    timestamp: datetime = Field(default_factory=datetime.now)
    data: Dict[str, Any] = Field(default_factory=dict)


class StatusUpdateMessage(WebSocketMessage):
    """Monitor status change."""

    type: str = "status_update"


class ConnectionManager:
    """Tracks WebSocket clients and fans out status changes to them."""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self.connection_metadata: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()
        self.controller = None
        self.cleanup_task: Optional[asyncio.Task] = None
        self._running = False

    def attach(self, controller) -> None:
        """Subscribe to a monitoring controller's status stream."""
        if self.controller is controller:
            return
        if self.controller is not None:
            self.controller.remove_status_callback(self.broadcast_status)

        self.controller = controller
        if controller is not None:
            controller.add_status_callback(self.broadcast_status)

    async def connect(self, websocket: WebSocket, client_id: Optional[str] = None) -> None:
        """Accept and register a WebSocket connection."""
        await websocket.accept()
        self.active_connections.add(websocket)

        self.connection_metadata[websocket] = {
            "client_id": client_id or f"client_{id(websocket)}",
            "connected_at": datetime.now(),
            "last_ping": datetime.now()
        }

        logger.info("WebSocket connection established",
                    client_id=self.connection_metadata[websocket]["client_id"],
                    total_connections=len(self.active_connections))

        await self._send_current_status(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        if websocket in self.active_connections:
            client_id = self.connection_metadata.get(websocket, {}).get("client_id", "unknown")
            self.active_connections.discard(websocket)

            logger.info("WebSocket connection closed",
                        client_id=client_id,
                        total_connections=len(self.active_connections))

    async def send_personal_message(self, message: Dict[str, Any], websocket: WebSocket) -> None:
        try:
            await websocket.send_text(json.dumps(message, default=str))
        except Exception as e:
            logger.error("Error sending personal message", error=str(e))
            self.disconnect(websocket)

    async def broadcast_message(self, message: Dict[str, Any]) -> None:
        """Send a message to every connected client, dropping dead ones."""
        if not self.active_connections:
            return

        disconnected = set()
        payload = json.dumps(message, default=str)

        for websocket in self.active_connections.copy():
            try:
                await websocket.send_text(payload)
            except Exception as e:
                logger.warning("Error broadcasting to client", error=str(e))
                disconnected.add(websocket)

        for websocket in disconnected:
            self.disconnect(websocket)

    async def broadcast_status(self, status: MonitorStatus) -> None:
        """Status callback: push one status change to all clients."""
        message = StatusUpdateMessage(data=status.export_dict()).model_dump()
        await self.broadcast_message(message)

    async def handle_client_message(self, websocket: WebSocket, message: Dict[str, Any]) -> None:
        """Handle incoming message from WebSocket client."""
        message_type = message.get("type")

        if message_type == "ping":
            if websocket in self.connection_metadata:
                self.connection_metadata[websocket]["last_ping"] = datetime.now()
            await self.send_personal_message({"type": "pong", "timestamp": datetime.now()}, websocket)

        elif message_type == "get_status":
            await self._send_current_status(websocket)

        else:
            logger.warning("Unknown WebSocket message type", message_type=message_type)
            await self.send_personal_message({
                "type": "error",
                "timestamp": datetime.now(),
                "data": {"message": f"Unknown message type: {message_type}"}
            }, websocket)

    async def _send_current_status(self, websocket: WebSocket) -> None:
        if self.controller is None:
            return

        await self.send_personal_message({
            "type": "current_status",
            "timestamp": datetime.now(),
            "data": {
                "status": self.controller.status.export_dict(),
                "monitoring": self.controller.get_monitoring_stats()
            }
        }, websocket)

    def start_background_tasks(self) -> None:
        if not self._running:
            self._running = True
            self.cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_background_tasks(self) -> None:
        self._running = False
        if self.cleanup_task:
            self.cleanup_task.cancel()
            try:
                await self.cleanup_task
            except asyncio.CancelledError:
                pass
            self.cleanup_task = None

    async def _cleanup_loop(self) -> None:
        while self._running:
            try:
                await self._cleanup_stale_connections()
                await asyncio.sleep(30.0)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in connection cleanup", error=str(e))
                await asyncio.sleep(30.0)

    async def _cleanup_stale_connections(self) -> None:
        """Close connections that haven't sent a ping recently."""
        stale_threshold = datetime.now() - timedelta(minutes=5)
        stale_connections = [
            websocket for websocket in self.active_connections.copy()
            if self.connection_metadata.get(websocket, {}).get("last_ping", datetime.now()) < stale_threshold
        ]

        for websocket in stale_connections:
            try:
                await websocket.close()
            except RuntimeError:
                # Already closed
                pass
            self.disconnect(websocket)


# Global connection manager instance
connection_manager = ConnectionManager()


async def websocket_endpoint(websocket: WebSocket, client_id: Optional[str] = None) -> None:
    """WebSocket endpoint handler."""
    await connection_manager.connect(websocket, client_id)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning("Invalid JSON received from WebSocket client")
                continue

            if isinstance(message, dict):
                await connection_manager.handle_client_message(websocket, message)

    except WebSocketDisconnect:
        connection_manager.disconnect(websocket)


__all__ = [
    "websocket_endpoint",
    "connection_manager",
    "ConnectionManager",
    "WebSocketMessage",
    "StatusUpdateMessage"
]
