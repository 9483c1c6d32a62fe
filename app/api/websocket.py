"""
WebSocket API Endpoints
Real-time workflow notifications
"""
from __future__ import annotations

import json
from typing import List, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.websockets.connection_manager import manager

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    subscribe: List[str] = Query(default=["all"]),
    user_id: Optional[str] = Query(default=None),
):
    """
    WebSocket endpoint for workflow updates. Pass `user_id` to receive only
    your own workflow notifications.

    Example:
      ws://localhost:8000/ws?subscribe=workflow_notification&user_id=editor-1
    """
    await manager.connect(websocket, subscribe, user_id=user_id)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if message.get("type") == "ping":
                await manager.send_personal(websocket, "pong", {"status": "alive"})
    except WebSocketDisconnect:
        manager.disconnect(websocket)
