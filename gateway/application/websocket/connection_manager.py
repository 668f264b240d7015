from typing import Dict, List, Optional
from fastapi import WebSocket
import asyncio
import structlog

from .connection_state import ConnectionState
from .schema.events import BaseEvent, ErrorEvent

logger = structlog.get_logger(__name__)


class ConnectionManager:
    """Manages WebSocket connections and their per-connection state"""

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self.states: Dict[str, ConnectionState] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, connection_id: str) -> ConnectionState:
        """Accept a new WebSocket connection"""
        await websocket.accept()

        state = ConnectionState(connection_id)
        async with self._lock:
            self.active_connections[connection_id] = websocket
            self.states[connection_id] = state

        logger.info("WebSocket connected", connection_id=connection_id)
        return state

    async def disconnect(self, connection_id: str, close_socket: bool = False):
        """Drop a connection, denying its pending approvals and cancelling its turns"""
        async with self._lock:
            ws = self.active_connections.pop(connection_id, None)
            state = self.states.pop(connection_id, None)

        if state is not None:
            state.close()

        if ws is not None and close_socket:
            try:
                await ws.close()
            except Exception as e:
                logger.error("Error closing WebSocket", connection_id=connection_id, error=str(e))

        logger.info("WebSocket disconnected", connection_id=connection_id)

    async def send_event(self, connection_id: str, event: BaseEvent) -> bool:
        """Send an event to a specific connection"""
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            logger.warning("Attempted to send to disconnected client", connection_id=connection_id)
            return False

        try:
            await websocket.send_json(event.model_dump(mode="json"))
            return True

        except Exception as e:
            logger.error("Failed to send event", connection_id=connection_id, error=str(e))
            await self.disconnect(connection_id)
            return False

    async def broadcast(self, event: BaseEvent) -> int:
        """Send an event to every live connection; returns how many received it"""
        connection_ids = list(self.active_connections.keys())
        results = await asyncio.gather(
            *(self.send_event(connection_id, event) for connection_id in connection_ids),
            return_exceptions=True,
        )
        return sum(1 for result in results if result is True)

    async def send_error(
        self,
        connection_id: str,
        error_message: str,
        error_code: str,
        request_id: Optional[str] = None,
    ):
        """Send an error event to a connection"""
        error_event = ErrorEvent(request_id=request_id, code=error_code, message=error_message)
        await self.send_event(connection_id, error_event)

    def get_state(self, connection_id: str) -> Optional[ConnectionState]:
        return self.states.get(connection_id)

    def get_active_connections(self) -> List[str]:
        return list(self.active_connections.keys())
