"""WebSocket connection manager for real-time chat rooms.

This module owns the physical side of the transport: live WebSocket
connections, the logical rooms (one per chat) each connection is
subscribed to, and concurrent delivery of outbound events.

Key features:
    - One physical connection per client, multiplexing any number of rooms
    - Backend-assigned connection handles (never client-provided)
    - Concurrent delivery with asyncio.gather()
    - Per-recipient failures swallowed; dead connections dropped
    - Deterministic recipient sets (callers pass explicit handles)

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from fastapi import WebSocket

from .events import OutboundEvent, encode

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """A live, authenticated WebSocket.

    Attributes:
        handle: Backend-generated identifier for this connection.
        user_id: The authenticated user that owns the connection.
        websocket: The underlying socket.
        rooms: Chat ids whose room this connection is subscribed to.
    """
    handle: str
    user_id: str
    websocket: WebSocket
    rooms: Set[str] = field(default_factory=set)


class ConnectionManager:
    """Tracks connections and room subscriptions and delivers events.

    The manager never decides *who* should receive an event; the delivery
    coordinator computes recipient handles from current chat membership
    and hands them to ``deliver``.
    """

    def __init__(self) -> None:
        # handle -> Connection
        self.connections: Dict[str, Connection] = {}

        # chat_id -> set of subscribed handles
        self.rooms: Dict[str, Set[str]] = {}

    async def accept(self, websocket: WebSocket, user_id: str) -> Connection:
        """Accept an already-authenticated WebSocket and assign it a handle."""
        await websocket.accept()
        connection = Connection(handle=uuid.uuid4().hex, user_id=user_id, websocket=websocket)
        self.connections[connection.handle] = connection
        logger.info(f"[Manager] Connection {connection.handle} accepted for user {user_id}")
        return connection

    def drop(self, handle: str) -> Optional[Connection]:
        """Forget a connection and all of its room subscriptions."""
        self.leave_all(handle)
        return self.connections.pop(handle, None)

    # =========================================================================
    # Rooms
    # =========================================================================

    def join(self, handle: str, room: str) -> bool:
        """Subscribe a connection to a room. Returns False for unknown handles."""
        connection = self.connections.get(handle)
        if connection is None:
            return False
        connection.rooms.add(room)
        self.rooms.setdefault(room, set()).add(handle)
        return True

    def leave(self, handle: str, room: str) -> None:
        """Unsubscribe a connection from a room (idempotent)."""
        connection = self.connections.get(handle)
        if connection is not None:
            connection.rooms.discard(room)
        self._discard(room, handle)

    def leave_all(self, handle: str) -> Set[str]:
        """Unsubscribe a connection from every room. Returns the rooms it left."""
        connection = self.connections.get(handle)
        if connection is None:
            return set()
        left = set(connection.rooms)
        for room in left:
            self.leave(handle, room)
        return left

    def leave_user(self, user_id: str, room: str) -> None:
        """Unsubscribe every connection of one user from a room."""
        for handle in self.handles_for_user(user_id):
            self.leave(handle, room)

    def _discard(self, room: str, handle: str) -> None:
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(handle)
        if not members:
            del self.rooms[room]

    def room_handles(self, room: str) -> Set[str]:
        return set(self.rooms.get(room, ()))

    def owner_of(self, handle: str) -> Optional[str]:
        connection = self.connections.get(handle)
        return connection.user_id if connection else None

    def handles(self) -> Set[str]:
        return set(self.connections)

    def handles_for_user(self, user_id: str) -> Set[str]:
        return {h for h, c in self.connections.items() if c.user_id == user_id}

    # =========================================================================
    # Delivery
    # =========================================================================

    async def deliver(self, event: OutboundEvent, handles: Iterable[str]) -> int:
        """Send one event to each handle concurrently.

        A failure on one connection does not affect the others; failed
        connections are dropped from their rooms.

        Returns:
            Number of connections the event was delivered to.
        """
        targets: List[Connection] = [
            self.connections[h] for h in set(handles) if h in self.connections
        ]
        if not targets:
            return 0

        payload = encode(event)
        results = await asyncio.gather(
            *[self._safe_send(conn, payload) for conn in targets],
            return_exceptions=True
        )

        failed = [conn for conn, success in zip(targets, results) if success is not True]
        for conn in failed:
            self.drop(conn.handle)
            logger.debug(f"Removed dead connection {conn.handle}")
        return len(targets) - len(failed)

    async def send(self, handle: str, event: OutboundEvent) -> bool:
        """Send one event to a single connection."""
        return await self.deliver(event, [handle]) == 1

    async def _safe_send(self, connection: Connection, payload: dict) -> bool:
        """Send a message to a WebSocket connection with error handling.

        Returns:
            True if successful, False if connection failed.
        """
        try:
            await connection.websocket.send_json(payload)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection {connection.handle}: {e}")
            return False
