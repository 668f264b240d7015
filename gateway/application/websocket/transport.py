from typing import Protocol, TYPE_CHECKING

from .schema.events import BaseEvent

if TYPE_CHECKING:
    from .connection_manager import ConnectionManager


class Transport(Protocol):
    """Where a turn, workflow or heartbeat sends its outbound events"""

    connection_id: str

    async def send(self, event: BaseEvent) -> bool:
        ...


class WebSocketTransport:
    """Transport bound to one websocket connection"""

    def __init__(self, manager: "ConnectionManager", connection_id: str):
        self.manager = manager
        self.connection_id = connection_id

    async def send(self, event: BaseEvent) -> bool:
        return await self.manager.send_event(self.connection_id, event)


class BroadcastTransport:
    """Transport fanning events out to every live connection"""

    connection_id = "broadcast"

    def __init__(self, manager: "ConnectionManager"):
        self.manager = manager

    async def send(self, event: BaseEvent) -> bool:
        return await self.manager.broadcast(event) > 0
