# signaling.py
"""In-memory participant registry and message fan-out for the signaling socket.

A connection is one open WebSocket. A user may hold several connections
(their personal channel), and each connection is in at most one room.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    connection_id: str
    user_id: str
    user: Dict[str, Any]
    websocket: WebSocket
    current_room_id: Optional[str] = None


async def safe_send(ws: WebSocket, msg: dict):
    """Send a JSON message safely (ignore disconnected sockets)."""
    try:
        if ws.client_state == WebSocketState.CONNECTED:
            await ws.send_text(json.dumps(msg, default=str))
    except Exception as e:
        logger.debug(f"[hub] Dropped message to closed socket: {e}")


class SignalingHub:
    def __init__(self):
        self.connections: Dict[str, Connection] = {}
        self.user_connections: Dict[str, Set[str]] = {}
        # Lists keep join order for participant listings
        self.rooms: Dict[str, List[str]] = {}

    # ---------- Registry ----------

    def register(self, connection: Connection):
        self.connections[connection.connection_id] = connection
        self.user_connections.setdefault(connection.user_id, set()).add(connection.connection_id)
        logger.info(f"[hub] ✅ {connection.user.get('username')} connected ({connection.connection_id})")

    def unregister(self, connection_id: str) -> Optional[Connection]:
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return None
        if connection.current_room_id:
            self._remove_from_room(connection, connection.current_room_id)
        ids = self.user_connections.get(connection.user_id)
        if ids is not None:
            ids.discard(connection_id)
            if not ids:
                self.user_connections.pop(connection.user_id, None)
        logger.info(f"[hub] ❌ {connection.user.get('username')} disconnected ({connection_id})")
        return connection

    def get(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    def is_user_connected(self, user_id: str) -> bool:
        return bool(self.user_connections.get(user_id))

    # ---------- Room membership ----------

    def join(self, connection_id: str, room_id: str) -> Optional[str]:
        """Put a connection in `room_id`. Returns the room it had to leave, if any."""
        connection = self.connections[connection_id]
        previous = connection.current_room_id
        if previous == room_id:
            return None
        if previous:
            self._remove_from_room(connection, previous)
        self.rooms.setdefault(room_id, []).append(connection_id)
        connection.current_room_id = room_id
        return previous

    def leave(self, connection_id: str, room_id: str) -> bool:
        connection = self.connections.get(connection_id)
        if connection is None or connection.current_room_id != room_id:
            return False
        self._remove_from_room(connection, room_id)
        return True

    def _remove_from_room(self, connection: Connection, room_id: str):
        members = self.rooms.get(room_id)
        if members and connection.connection_id in members:
            members.remove(connection.connection_id)
            if not members:
                self.rooms.pop(room_id, None)
        connection.current_room_id = None

    def room_connections(self, room_id: str) -> List[Connection]:
        return [self.connections[cid] for cid in self.rooms.get(room_id, []) if cid in self.connections]

    def participants(self, room_id: str) -> List[Dict[str, Any]]:
        """Distinct users connected to the room, in join order."""
        seen = set()
        users = []
        for connection in self.room_connections(room_id):
            if connection.user_id in seen:
                continue
            seen.add(connection.user_id)
            users.append(connection.user)
        return users

    def user_in_room(self, user_id: str, room_id: str, exclude: Optional[str] = None) -> bool:
        return any(
            c.user_id == user_id and c.connection_id != exclude
            for c in self.room_connections(room_id)
        )

    # ---------- Delivery ----------

    async def send_to_connection(self, connection_id: str, msg: dict):
        connection = self.connections.get(connection_id)
        if connection:
            await safe_send(connection.websocket, msg)

    async def send_to_user(self, user_id: str, msg: dict, room_id: Optional[str] = None) -> int:
        """Deliver to the user's personal channel, optionally only inside `room_id`."""
        delivered = 0
        for cid in list(self.user_connections.get(user_id, ())):
            connection = self.connections.get(cid)
            if connection is None:
                continue
            if room_id is not None and connection.current_room_id != room_id:
                continue
            await safe_send(connection.websocket, msg)
            delivered += 1
        return delivered

    async def send_to_room(self, room_id: str, msg: dict, exclude: Optional[str] = None):
        for connection in self.room_connections(room_id):
            if connection.connection_id == exclude:
                continue
            await safe_send(connection.websocket, msg)


hub = SignalingHub()
