"""
WebSocket Connection Manager
Pushes workflow notifications and publish events to connected editors
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Set

from fastapi import WebSocket

CHANNELS = ("workflow_notification", "content_published", "all")


class ConnectionManager:
    """Manages WebSocket connections per channel and per user."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self.subscribers: Dict[str, Set[WebSocket]] = {channel: set() for channel in CHANNELS}
        self.users: Dict[WebSocket, str] = {}

    async def connect(self, websocket: WebSocket, subscribe_to: List[str] | None = None,
                      user_id: str | None = None):
        """Accept new WebSocket connection."""
        await websocket.accept()
        self.active_connections.append(websocket)
        if user_id:
            self.users[websocket] = user_id

        channels = [c for c in (subscribe_to or ["all"]) if c in self.subscribers] or ["all"]
        for channel in channels:
            self.subscribers[channel].add(websocket)

        await websocket.send_json(
            {
                "type": "connection_established",
                "message": "Connected to content workflow updates",
                "subscriptions": channels,
                "user_id": user_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    def disconnect(self, websocket: WebSocket):
        """Remove WebSocket connection."""
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        self.users.pop(websocket, None)
        for subscribers in self.subscribers.values():
            subscribers.discard(websocket)

    def _recipients(self, event_type: str, data: dict) -> Set[WebSocket]:
        recipients = self.subscribers.get(event_type, set()) | self.subscribers["all"]
        target = data.get("user_id") if event_type == "workflow_notification" else None
        if target is None:
            return recipients
        # Anonymous sockets see everything; identified sockets only their own notifications.
        return {ws for ws in recipients if self.users.get(ws) in (None, target)}

    async def broadcast(self, event_type: str, data: dict):
        """Send an event to every subscribed connection."""
        message = {
            "type": event_type,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        disconnected: List[WebSocket] = []
        for connection in self._recipients(event_type, data):
            try:
                await connection.send_json(message)
            except Exception:
                disconnected.append(connection)
        for connection in disconnected:
            self.disconnect(connection)

    async def send_personal(self, websocket: WebSocket, event_type: str, data: dict):
        """Send message to specific connection."""
        try:
            await websocket.send_json(
                {
                    "type": event_type,
                    "data": data,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            )
        except Exception:
            self.disconnect(websocket)


manager = ConnectionManager()
