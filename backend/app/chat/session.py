"""Chat session service: the single owner of all live chat state.

``ChatSession`` composes the connection registry, room directory, message
store and typing tracker, and implements every operation the WebSocket
handlers expose. One instance is built per application (``create_app``)
and handed to handlers through ``app.state``; nothing here is a module
global, so tests can run as many independent sessions as they like.

Ordering:
    Handlers run every inbound event (and every disconnect) under
    ``dispatch_lock``, so events from all connections are applied one at a
    time and each runs to completion, broadcasts included, before the next
    starts. Room, message and user maps therefore need no finer locking.

Broadcast events per operation:
    join            room_users/room_joined/messages_history per default room,
                    init_state (joiner), user_list + notification (everyone)
    join_room       room_users (room), room_joined + messages_history (joiner)
    leave_room      typing_users + room_users (room)
    create_room     join_room events, room_list + notification (everyone)
    send            message_ack (sender), receive_message (room), notification
    send_direct     private_message (two-party room)
    mark_read       message_read (room)
    toggle_reaction message_reaction (room)
    set_typing      typing_users (room), on every call
    disconnect      typing_users + room_users per vacated room,
                    user_list + notification (everyone)
"""
import asyncio
import logging
from typing import Iterable, List, Optional, Tuple

from fastapi import WebSocket

from app.config import ChatSettings

from . import notifications
from .delivery import build_message, validate_attachments
from .errors import RecipientOfflineError
from .manager import ConnectionManager
from .models import Message, Notification, Room, User, UserStatus, unknown_member, utc_now_iso
from .presence import TypingTracker
from .protocol import AttachmentInput
from .rooms import RoomDirectory, direct_conversation_id
from .store import HistoryPage, MessageStore

logger = logging.getLogger(__name__)

FALLBACK_ROOM_ID = "general"


class ChatSession:
    """Owns users, rooms, messages and typing state for one server."""

    def __init__(self, settings: Optional[ChatSettings] = None) -> None:
        self.settings = settings or ChatSettings()
        self.connections = ConnectionManager(
            avatar_colors=self.settings.avatar_colors,
            max_username_length=self.settings.max_username_length,
            send_timeout=self.settings.send_timeout,
        )
        self.rooms = RoomDirectory(self.settings.default_rooms)
        self.store = MessageStore(self.settings.max_room_messages)
        self.typing = TypingTracker()
        self.dispatch_lock = asyncio.Lock()

    # =========================================================================
    # Projections
    # =========================================================================

    def online_users(self) -> List[dict]:
        return [user.to_client() for user in self.connections.online_users()]

    def room_list(self) -> List[dict]:
        return [room.to_client() for room in self.rooms.list()]

    def room_members(self, room: Room) -> List[dict]:
        members = []
        for member_id in room.members:
            user = self.connections.get_user(member_id)
            members.append(user.to_client() if user else unknown_member(member_id))
        return members

    def page_size(self, limit: Optional[int]) -> int:
        if not limit or limit < 1:
            return self.settings.history_page_size
        return min(limit, self.settings.max_page_size)

    def history_page(
        self, room_id: str, cursor: Optional[str] = None, limit: Optional[int] = None
    ) -> HistoryPage:
        """Shared read path for live ``load_messages`` and the HTTP mirror."""
        return self.store.page_before(room_id, cursor, self.page_size(limit))

    def search_messages(self, room_id: str, query: str, limit: Optional[int] = None) -> List[Message]:
        """Shared read path for live ``search_messages`` and the HTTP mirror."""
        return self.store.search(room_id, query, limit)

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, websocket: WebSocket) -> str:
        return await self.connections.connect(websocket)

    async def join(
        self, connection_id: str, username: Optional[str], avatar_color: Optional[str] = None
    ) -> User:
        """Complete the join handshake for a connection.

        The user is enrolled in every default room before ``init_state`` is
        sent, so the first snapshot a client sees is never empty.
        Joining again on the same connection updates the identity without
        announcing it a second time.

        Raises:
            ValidationError: Blank or over-long username.
        """
        rejoining = connection_id in self.connections.users
        user = self.connections.register_user(connection_id, username, avatar_color)

        for room_id in self.rooms.default_room_ids:
            await self.join_room(connection_id, room_id)

        await self.connections.send(connection_id, "init_state", {
            "user": user.to_client(),
            "rooms": self.room_list(),
            "onlineUsers": self.online_users(),
        })
        await self.connections.broadcast_all("user_list", self.online_users())
        if not rejoining:
            await self.notify(notifications.user_joined(user))
        logger.info(f"[Session] {user.username} joined ({len(self.connections.users)} online)")
        return user

    async def disconnect(self, connection_id: str) -> Optional[User]:
        """Tear down a connection; vacate every room its user belonged to."""
        self.connections.release(connection_id)
        user = self.connections.get_user(connection_id)
        if user is None:
            return None

        user.status = UserStatus.OFFLINE
        user.lastSeen = utc_now_iso()
        vacated = list(user.rooms)
        for room_id in vacated:
            self._remove_membership(user, room_id)
        self.connections.remove_user(connection_id)

        for room_id in vacated:
            await self._broadcast_room_state(room_id)
        await self.connections.broadcast_all("user_list", self.online_users())
        await self.notify(notifications.user_left(user))
        logger.info(f"[Session] {user.username} disconnected, vacated {len(vacated)} room(s)")
        return user

    # =========================================================================
    # Rooms
    # =========================================================================

    async def join_room(self, connection_id: str, room_id: Optional[str]) -> Optional[Room]:
        """Idempotently add the user to a room, creating it lazily if needed.

        The joiner gets ``room_joined`` and the latest history page; the
        room gets the updated member list.
        """
        user = self.connections.get_user(connection_id)
        if user is None or not room_id:
            return None

        room = self.rooms.add_member(room_id, user.id)
        user.add_room(room_id)
        self.connections.subscribe(connection_id, room_id)
        page = self.store.latest_page(room_id, self.settings.history_page_size)

        await self.connections.broadcast(room_id, "room_users", {
            "roomId": room_id,
            "users": self.room_members(room),
        })
        await self.connections.send(connection_id, "room_joined", {
            "room": room.to_client(),
            "roomId": room_id,
        })
        await self.connections.send(connection_id, "messages_history", {
            "roomId": room_id,
            **page.to_client(),
        })
        return room

    async def leave_room(self, connection_id: str, room_id: Optional[str]) -> None:
        """Idempotent inverse of ``join_room``; also clears the typing entry."""
        if not room_id:
            return
        user = self.connections.get_user(connection_id)
        if user is not None and self.rooms.exists(room_id):
            self._remove_membership(user, room_id)
            await self._broadcast_room_state(room_id)
        self.connections.unsubscribe(connection_id, room_id)

    async def create_room(
        self,
        connection_id: str,
        name: Optional[str],
        description: Optional[str] = None,
        is_private: bool = False,
    ) -> Optional[Room]:
        """Create a named room and join its creator to it.

        Raises:
            ValidationError: Blank name.
            ConflictError: The derived id is taken.
        """
        user = self.connections.get_user(connection_id)
        if user is None:
            return None

        room = self.rooms.create(name, description, is_private, creator=user.username)
        await self.join_room(connection_id, room.id)
        await self.connections.broadcast_all("room_list", self.room_list())
        await self.notify(notifications.room_created(user, room))
        return room

    def _remove_membership(self, user: User, room_id: str) -> None:
        self.rooms.remove_member(room_id, user.id)
        user.remove_room(room_id)
        self.typing.clear(room_id, user.id)

    async def _broadcast_room_state(self, room_id: str) -> None:
        room = self.rooms.get(room_id)
        await self.connections.broadcast(room_id, "typing_users", {
            "roomId": room_id,
            "users": self.typing.users(room_id),
        })
        if room is not None:
            await self.connections.broadcast(room_id, "room_users", {
                "roomId": room_id,
                "users": self.room_members(room),
            })

    # =========================================================================
    # Delivery
    # =========================================================================

    def _prepare_attachments(self, attachments: Optional[Iterable[Optional[AttachmentInput]]]):
        return validate_attachments(
            attachments or [],
            max_size=self.settings.max_attachment_size,
            name_limit=self.settings.attachment_name_limit,
        )

    async def send(
        self,
        connection_id: str,
        room_id: Optional[str],
        content: Optional[str],
        attachments: Optional[Iterable[Optional[AttachmentInput]]] = None,
        client_temp_id: Optional[str] = None,
    ) -> Optional[Message]:
        """Validate, store and fan out a room message.

        Any known user may post to any room id; the sender is joined to the
        room first if it is not already a member. Unknown senders are ignored.

        Returns:
            The stored message (the acknowledgement payload), or None.
        """
        sender = self.connections.get_user(connection_id)
        if sender is None:
            logger.debug(f"[Session] send from unjoined connection {connection_id} ignored")
            return None

        room_id = room_id or FALLBACK_ROOM_ID
        if room_id not in sender.rooms:
            await self.join_room(connection_id, room_id)

        message = build_message(
            sender,
            room_id,
            content,
            self._prepare_attachments(attachments),
            client_temp_id=client_temp_id,
        )
        self.store.append(room_id, message)

        await self.connections.send(connection_id, "message_ack", message.to_client())
        await self.connections.broadcast(room_id, "receive_message", message.to_client())
        await self.notify(notifications.message_sent(message))
        return message

    async def send_direct(
        self,
        connection_id: str,
        to: Optional[str],
        content: Optional[str],
        attachments: Optional[Iterable[Optional[AttachmentInput]]] = None,
        client_temp_id: Optional[str] = None,
    ) -> Tuple[Message, str]:
        """Send a private message through the two-party room.

        The recipient's connection is subscribed to the room; the
        recipient's own room selection on the client is left alone.

        Returns:
            (message, room_id)

        Raises:
            RecipientOfflineError: Sender or recipient has no live user.
        """
        sender = self.connections.get_user(connection_id)
        target = self.connections.get_user(to) if to else None
        if sender is None or target is None:
            raise RecipientOfflineError()

        room_id = direct_conversation_id(sender.id, target.id)
        room = self.rooms.ensure(room_id)
        room.isPrivate = True
        room.name = f"{sender.username} & {target.username}"
        room.add_member(target.id)
        target.add_room(room_id)
        self.connections.subscribe(target.id, room_id)

        if room_id not in sender.rooms:
            await self.join_room(connection_id, room_id)

        message = build_message(
            sender,
            room_id,
            content,
            self._prepare_attachments(attachments),
            client_temp_id=client_temp_id,
            is_private=True,
        )
        self.store.append(room_id, message)

        await self.connections.broadcast(room_id, "private_message", message.to_client())
        logger.info(f"[Session] Private message {message.id} in {room_id}")
        return message, room_id

    async def mark_read(
        self,
        connection_id: str,
        room_id: Optional[str],
        message_id: Optional[str],
        reader_id: Optional[str] = None,
    ) -> Optional[List[str]]:
        """Add a reader to a message's ``readBy`` and broadcast the result."""
        user = self.connections.get_user(connection_id)
        if user is None or not room_id or not message_id:
            return None
        message = self.store.find_by_id(room_id, message_id)
        if message is None:
            logger.debug(f"[Session] read receipt for unknown message {message_id} ignored")
            return None

        read_by = message.mark_read(reader_id or user.id)
        await self.connections.broadcast(room_id, "message_read", {
            "roomId": room_id,
            "messageId": message_id,
            "readBy": read_by,
        })
        return read_by

    async def toggle_reaction(
        self,
        connection_id: str,
        room_id: Optional[str],
        message_id: Optional[str],
        reaction: Optional[str],
    ) -> Optional[dict]:
        """React, or un-react if the user already applied this symbol."""
        user = self.connections.get_user(connection_id)
        if user is None or not room_id or not message_id or not reaction:
            return None
        message = self.store.find_by_id(room_id, message_id)
        if message is None:
            logger.debug(f"[Session] reaction for unknown message {message_id} ignored")
            return None

        reactions = message.toggle_reaction(reaction, user.id)
        await self.connections.broadcast(room_id, "message_reaction", {
            "roomId": room_id,
            "messageId": message_id,
            "reactions": reactions,
        })
        return reactions

    # =========================================================================
    # Presence, history, search
    # =========================================================================

    async def set_typing(
        self, connection_id: str, room_id: Optional[str], is_typing: bool
    ) -> Optional[List[str]]:
        """Update the typing set and broadcast it, even when nothing changed."""
        user = self.connections.get_user(connection_id)
        if user is None or not room_id:
            return None
        names = self.typing.set_typing(room_id, user.id, user.username, is_typing)
        await self.connections.broadcast(room_id, "typing_users", {
            "roomId": room_id,
            "users": names,
        })
        return names

    async def load_messages(
        self,
        connection_id: str,
        room_id: Optional[str],
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Optional[HistoryPage]:
        if not room_id:
            return None
        page = self.history_page(room_id, cursor, limit)
        await self.connections.send(connection_id, "messages_history", {
            "roomId": room_id,
            **page.to_client(),
        })
        return page

    async def search(
        self, connection_id: str, room_id: Optional[str], query: Optional[str]
    ) -> Optional[List[Message]]:
        if not room_id or not query:
            return None
        results = self.search_messages(room_id, query, self.settings.search_result_limit)
        await self.connections.send(connection_id, "search_results", {
            "roomId": room_id,
            "query": query,
            "results": [msg.to_client() for msg in results],
        })
        return results

    async def notify(self, notification: Notification) -> None:
        """Fan a notification out to every live connection."""
        await self.connections.broadcast_all("notification", notification.to_client())
