"""
Project rooms for live task updates.

Every open WebSocket gets a connection id and may join any number of rooms,
one room per project id. Joining is not authorized: a room only decides who
hears about changes, the HTTP API still guards the data. Publishing sends to
every connection in the room, the one that caused the change included.
Delivery is best-effort with no replay; a client that reconnects must fetch
the project again.
"""
import logging
import uuid
from enum import Enum
from typing import Dict, Set

from fastapi.encoders import jsonable_encoder

from database import to_str_id

logger = logging.getLogger(__name__)


class Event(str, Enum):
    TASK_CREATED = "task:created"
    TASK_DELETED = "task:deleted"
    TASK_UPDATED = "task:updated"
    # sent after every toggle, in both directions
    TASK_COMPLETED = "task:completed"


class RoomRegistry:
    def __init__(self):
        self.connections: Dict[str, object] = {}
        self.rooms: Dict[str, Set[str]] = {}

    def connect(self, websocket) -> str:
        connection_id = uuid.uuid4().hex
        self.connections[connection_id] = websocket
        logger.debug("Connection %s opened", connection_id)
        return connection_id

    def join(self, connection_id: str, project_id) -> None:
        if connection_id not in self.connections:
            raise KeyError(connection_id)
        self.rooms.setdefault(str(project_id), set()).add(connection_id)

    def leave(self, connection_id: str, project_id) -> None:
        room = self.rooms.get(str(project_id))
        if room is None:
            return
        room.discard(connection_id)
        if not room:
            del self.rooms[str(project_id)]

    def disconnect(self, connection_id: str) -> None:
        self.connections.pop(connection_id, None)
        for project_id in list(self.rooms):
            self.leave(connection_id, project_id)
        logger.debug("Connection %s closed", connection_id)

    def members(self, project_id) -> Set[str]:
        return set(self.rooms.get(str(project_id), ()))

    async def publish(self, project_id, event: Event, payload) -> int:
        """Send `event` to everyone in the project's room. Returns how many connections got it."""
        message = {
            "event": Event(event).value,
            "project": str(project_id),
            "data": jsonable_encoder(to_str_id(payload)),
        }
        delivered = 0
        for connection_id in sorted(self.members(project_id)):
            websocket = self.connections.get(connection_id)
            if websocket is None:
                continue
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception:
                logger.warning("Dropping connection %s after failed send", connection_id, exc_info=True)
                self.disconnect(connection_id)
        logger.debug("Published %s to %d connections in room %s", message["event"], delivered, project_id)
        return delivered


rooms = RoomRegistry()
