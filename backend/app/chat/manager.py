"""WebSocket connection registry and event fan-out.

This module tracks live WebSocket connections, the transient user identity
bound to each one, and which connections are subscribed to which room's
broadcasts.

Key features:
    - Backend-assigned connection ids (the user id equals the connection id)
    - Online user registry with avatar colour assignment
    - Per-room broadcast subscriptions, independent of room membership
    - Concurrent broadcasting with asyncio.gather()
    - Automatic dead connection cleanup

Delivery Model:
    Broadcasts are fire-and-forget. A send that fails is logged and the
    connection is unsubscribed from that room; nothing is retried or queued
    for later. A send that does not complete within ``send_timeout`` counts
    as failed and the stalled connection is dropped and closed, so one slow
    subscriber cannot hold up the others. A reconnecting client gets a new identity and pulls recent
    history when it re-joins rooms.

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import asyncio
import logging
import random
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from fastapi import WebSocket

from .errors import ValidationError
from .models import User
from .protocol import event_frame

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Maps connections to users and rooms to subscribed connections.

    A connection exists from WebSocket accept until disconnect. A user exists
    only once the connection completed the join handshake.
    """

    def __init__(
        self,
        avatar_colors: Sequence[str] = ("#f97316",),
        max_username_length: int = 40,
        send_timeout: float = 5.0,
    ) -> None:
        self.avatar_colors = list(avatar_colors)
        self.max_username_length = max_username_length
        self.send_timeout = send_timeout

        # connection_id -> WebSocket
        self.active_connections: Dict[str, WebSocket] = {}

        # connection_id -> User (only after a successful join)
        self.users: Dict[str, User] = {}

        # room_id -> connection ids receiving that room's broadcasts
        self.subscriptions: Dict[str, Set[str]] = {}

        # Background closes of stalled connections
        self._closing: Set["asyncio.Future[None]"] = set()

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a WebSocket connection and assign it an id.

        SECURITY: The id is generated on the backend and never taken from
        the client.
        """
        await websocket.accept()
        connection_id = str(uuid.uuid4())
        self.active_connections[connection_id] = websocket
        logger.info(f"[Manager] Connection {connection_id} accepted ({len(self.active_connections)} live)")
        return connection_id

    def release(self, connection_id: str) -> None:
        """Forget a connection and all of its room subscriptions."""
        self.active_connections.pop(connection_id, None)
        for subscribers in self.subscriptions.values():
            subscribers.discard(connection_id)

    # =========================================================================
    # Users
    # =========================================================================

    def register_user(
        self,
        connection_id: str,
        username: Optional[str],
        avatar_color: Optional[str] = None,
    ) -> User:
        """Bind a user identity to a connection.

        Joining again on the same connection updates the existing identity
        (name and colour) and keeps its room memberships.

        Raises:
            ValidationError: The username is blank or too long.
        """
        name = (username or "").strip()
        if not name:
            raise ValidationError("Username is required")
        if len(name) > self.max_username_length:
            raise ValidationError("Username is too long")

        color = avatar_color or random.choice(self.avatar_colors)
        user = self.users.get(connection_id)
        if user is not None:
            user.username = name
            user.avatarColor = color
            return user

        user = User(id=connection_id, username=name, avatarColor=color)
        self.users[connection_id] = user
        logger.info(f"[Manager] Registered user {name!r} on connection {connection_id}")
        return user

    def remove_user(self, connection_id: str) -> Optional[User]:
        return self.users.pop(connection_id, None)

    def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    def online_users(self) -> List[User]:
        return list(self.users.values())

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, connection_id: str, room_id: str) -> None:
        if connection_id in self.active_connections:
            self.subscriptions.setdefault(room_id, set()).add(connection_id)

    def unsubscribe(self, connection_id: str, room_id: str) -> None:
        self.subscriptions.get(room_id, set()).discard(connection_id)

    def is_subscribed(self, connection_id: str, room_id: str) -> bool:
        return connection_id in self.subscriptions.get(room_id, set())

    def get_room_size(self, room_id: str) -> int:
        """Get the number of connections subscribed to a room."""
        return len(self.subscriptions.get(room_id, set()))

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(self, connection_id: str, event: str, data: Any) -> bool:
        """Send one event to one connection."""
        return await self.send_frame(connection_id, event_frame(event, data))

    async def send_frame(self, connection_id: str, frame: dict) -> bool:
        connection = self.active_connections.get(connection_id)
        if connection is None:
            return False
        return await self._safe_send(connection_id, connection, frame)

    async def broadcast(self, room_id: str, event: str, data: Any) -> None:
        """Broadcast an event to every connection subscribed to a room.

        Connections that fail are unsubscribed from the room.
        """
        subscribers = list(self.subscriptions.get(room_id, set()))
        failed = await self._fan_out(subscribers, event_frame(event, data))
        for connection_id in failed:
            self.unsubscribe(connection_id, room_id)
            logger.debug(f"Removed dead connection {connection_id} from room {room_id}")

    async def broadcast_all(self, event: str, data: Any) -> None:
        """Broadcast an event to every live connection, joined or not."""
        await self._fan_out(list(self.active_connections), event_frame(event, data))

    async def _fan_out(self, connection_ids: Iterable[str], frame: dict) -> List[str]:
        """Send concurrently; return the ids whose send failed."""
        targets = [
            (connection_id, self.active_connections[connection_id])
            for connection_id in connection_ids
            if connection_id in self.active_connections
        ]
        if not targets:
            return []

        results = await asyncio.gather(
            *[self._safe_send(connection_id, conn, frame) for connection_id, conn in targets],
            return_exceptions=True
        )
        return [
            connection_id for (connection_id, _), success in zip(targets, results)
            if success is not True
        ]

    async def _safe_send(self, connection_id: str, connection: WebSocket, message: dict) -> bool:
        """Send a message to a WebSocket connection with error handling.

        A send that exceeds ``send_timeout`` drops the connection.

        Returns:
            True if successful, False if connection failed.
        """
        try:
            await asyncio.wait_for(connection.send_json(message), self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                f"[Manager] Send to {connection_id} timed out after {self.send_timeout}s; dropping it"
            )
            self._drop_stalled(connection_id, connection)
            return False
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False

    def _drop_stalled(self, connection_id: str, connection: WebSocket) -> None:
        """Stop sending to a stalled connection and close it in the background.

        The user record stays until the receive loop observes the disconnect.
        """
        self.release(connection_id)
        task = asyncio.ensure_future(self._close_quietly(connection_id, connection))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_quietly(self, connection_id: str, connection: WebSocket) -> None:
        try:
            await asyncio.wait_for(connection.close(), self.send_timeout)
        except Exception as e:
            logger.debug(f"Failed to close stalled connection {connection_id}: {e}")
