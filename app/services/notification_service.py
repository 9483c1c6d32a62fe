from __future__ import annotations

from typing import Any, Protocol

from app.core.logger import get_logger
from app.websockets.connection_manager import ConnectionManager

logger = get_logger(__name__)


class NotificationSink(Protocol):
    async def send_notification(self, user_id: str, event_type: str, payload: dict[str, Any]) -> Any: ...


class NotificationService:
    """Logs workflow notifications and pushes them to websocket subscribers."""

    def __init__(self, connections: ConnectionManager | None = None):
        self.connections = connections

    async def send_notification(self, user_id: str, event_type: str, payload: dict[str, Any]) -> dict:
        logger.info('Notification user=%s type=%s workflow=%s', user_id, event_type, payload.get('workflow_id'))
        if self.connections is not None:
            await self.connections.broadcast(
                'workflow_notification',
                {'user_id': user_id, 'event_type': event_type, 'payload': payload},
            )
        return {'success': True, 'user_id': user_id, 'event_type': event_type}
