"""Client-side state reducer.

``ClientState.apply(event, data)`` folds one server event into the local
snapshot. Every handler is idempotent: replaying the same event leaves the
state unchanged, which is what makes reconnects and the double delivery of
one's own messages (``message_ack`` plus the room broadcast) harmless.

Messages are kept as wire dicts, per room, sorted by ``createdAt``. The
merge key is always the message id; an optimistic message (id ==
clientTempId, ``pending=True``) is dropped as soon as any server copy
carrying its clientTempId is merged.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from app.chat.models import new_id, utc_now_iso
from app.chat.rooms import direct_conversation_id

from .notifier import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)

DEFAULT_ROOM_ID = "general"


def _empty_search() -> dict:
    return {"roomId": None, "query": "", "results": []}


def _sort_messages(messages: Iterable[dict]) -> List[dict]:
    return sorted(messages, key=lambda msg: msg.get("createdAt") or "")


class ClientState:
    """In-memory snapshot of everything one client shows."""

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        notification_limit: int = 25,
        error_notification_limit: int = 20,
    ) -> None:
        self.notifier = notifier or LoggingNotifier()
        self.notification_limit = notification_limit
        self.error_notification_limit = error_notification_limit
        self.user: Optional[dict] = None
        self.focused = True
        self.reset()

        self._handlers: Dict[str, Callable[[Any], None]] = {
            "init_state": self._on_init_state,
            "room_list": self._on_room_list,
            "room_joined": self._on_room_joined,
            "room_users": self._on_room_users,
            "room_error": self._on_room_error,
            "messages_history": self._on_messages_history,
            "receive_message": self._on_new_message,
            "private_message": self._on_new_message,
            "message_ack": self.reconcile,
            "typing_users": self._on_typing_users,
            "user_list": self._on_user_list,
            "notification": self._on_notification,
            "message_reaction": self._on_message_reaction,
            "message_read": self._on_message_read,
            "search_results": self._on_search_results,
        }

    def reset(self) -> None:
        """Drop everything except the user and focus flag (logout / new login)."""
        self.rooms: Dict[str, dict] = {}
        self.active_room_id = DEFAULT_ROOM_ID
        self.messages_by_room: Dict[str, List[dict]] = {}
        self.typing_by_room: Dict[str, List[str]] = {}
        self.room_users: Dict[str, List[dict]] = {}
        self.online_users: List[dict] = []
        self.notifications: List[dict] = []
        self.unread: Dict[str, int] = {}
        self.search_results: dict = _empty_search()
        self.has_more: Dict[str, bool] = {}
        self.loading_history: Dict[str, bool] = {}

    @property
    def user_id(self) -> Optional[str]:
        return self.user["id"] if self.user else None

    def apply(self, event: str, data: Any) -> bool:
        """Fold one server event into the state.

        Returns:
            False when the event is not one the client understands.
        """
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug(f"[Client] Ignoring unknown event {event!r}")
            return False
        handler(data if data is not None else {})
        return True

    # =========================================================================
    # Projections
    # =========================================================================

    def sorted_rooms(self) -> List[dict]:
        """Rooms for display: general first, the rest by name."""
        return sorted(
            self.rooms.values(),
            key=lambda room: (room["id"] != DEFAULT_ROOM_ID, (room.get("name") or "").casefold()),
        )

    def messages(self, room_id: str) -> List[dict]:
        return self.messages_by_room.get(room_id, [])

    # =========================================================================
    # Local actions
    # =========================================================================

    def create_optimistic_message(
        self, room_id: str, content: Optional[str], attachments: Optional[List[dict]] = None
    ) -> str:
        """Insert a provisional message and return its temporary id."""
        temp_id = new_id()
        self._merge(room_id, {
            "id": temp_id,
            "clientTempId": temp_id,
            "roomId": room_id,
            "senderId": self.user_id,
            "senderName": self.user.get("username") if self.user else None,
            "avatarColor": self.user.get("avatarColor") if self.user else None,
            "content": content or "",
            "attachments": list(attachments or []),
            "createdAt": utc_now_iso(),
            "readBy": [self.user_id] if self.user_id else [],
            "reactions": {},
            "pending": True,
        })
        return temp_id

    def direct_room_id(self, other_user_id: str) -> str:
        return direct_conversation_id(self.user_id or "", other_user_id)

    def mark_room_read(self, room_id: str) -> List[dict]:
        """Reset the unread counter and return the read receipts to emit."""
        self.unread[room_id] = 0
        if not self.user_id:
            return []
        return [
            {"roomId": room_id, "messageId": msg["id"], "readerId": self.user_id}
            for msg in self.messages(room_id)
            if not msg.get("pending") and self.user_id not in (msg.get("readBy") or [])
        ]

    def next_history_request(self, room_id: str, limit: int = 25) -> Optional[dict]:
        """Build the next ``load_messages`` payload, or None if there is nothing to fetch.

        Only one request per room is in flight at a time; a room already
        holding messages is only paged further while the server says more
        history exists.
        """
        if not room_id or self.loading_history.get(room_id):
            return None
        messages = self.messages(room_id)
        if messages and not self.has_more.get(room_id):
            return None
        self.loading_history[room_id] = True
        return {
            "roomId": room_id,
            "cursor": messages[0]["createdAt"] if messages else None,
            "limit": limit,
        }

    def add_error(self, message: str) -> dict:
        notice = {
            "id": new_id(),
            "type": "error",
            "message": message,
            "timestamp": utc_now_iso(),
        }
        self.notifications = [notice, *self.notifications][:self.error_notification_limit]
        return notice

    def dismiss_notification(self, notification_id: str) -> None:
        self.notifications = [n for n in self.notifications if n.get("id") != notification_id]

    def clear_search_results(self) -> None:
        self.search_results = _empty_search()

    # =========================================================================
    # Message merging
    # =========================================================================

    def _merge(self, room_id: str, message: dict) -> None:
        """Merge one message by id, collapsing any optimistic copy it confirms."""
        temp_id = message.get("clientTempId")
        merged: Dict[str, dict] = {}
        for existing in self.messages(room_id):
            if (
                temp_id
                and existing["id"] != message["id"]
                and existing.get("pending")
                and (existing["id"] == temp_id or existing.get("clientTempId") == temp_id)
            ):
                continue
            merged[existing["id"]] = existing
        merged[message["id"]] = {**merged.get(message["id"], {}), **message}
        self.messages_by_room[room_id] = _sort_messages(merged.values())

    def reconcile(self, message: dict) -> None:
        """Apply a server-confirmed copy of a message (ack or broadcast)."""
        if not message or not message.get("roomId") or not message.get("id"):
            return
        self._merge(message["roomId"], {**message, "pending": False})

    def _patch_message(self, room_id: str, message_id: str, **fields: Any) -> None:
        self.messages_by_room[room_id] = [
            {**msg, **fields} if msg["id"] == message_id else msg
            for msg in self.messages(room_id)
        ]

    # =========================================================================
    # Event handlers
    # =========================================================================

    def _on_init_state(self, data: dict) -> None:
        if not data.get("user"):
            return
        self.user = data["user"]
        self.rooms = {room["id"]: room for room in data.get("rooms") or []}
        self.online_users = list(data.get("onlineUsers") or [])

    def _on_room_list(self, rooms: List[dict]) -> None:
        for room in rooms or []:
            self.rooms[room["id"]] = {**self.rooms.get(room["id"], {}), **room}

    def _on_room_joined(self, data: dict) -> None:
        room = data.get("room")
        if room:
            self.rooms[room["id"]] = {**self.rooms.get(room["id"], {}), **room}

    def _on_room_users(self, data: dict) -> None:
        if data.get("roomId"):
            self.room_users[data["roomId"]] = list(data.get("users") or [])

    def _on_room_error(self, data: dict) -> None:
        self.add_error(data.get("error") or "Room error")

    def _on_messages_history(self, data: dict) -> None:
        room_id = data.get("roomId")
        if not room_id:
            return
        merged = {msg["id"]: msg for msg in self.messages(room_id)}
        for msg in data.get("messages") or []:
            merged[msg["id"]] = {**merged.get(msg["id"], {}), **msg}
        self.messages_by_room[room_id] = _sort_messages(merged.values())

        has_more = data.get("hasMore")
        self.has_more[room_id] = bool(has_more) if has_more is not None else bool(data.get("nextCursor"))
        self.loading_history[room_id] = False

    def _on_new_message(self, message: dict) -> None:
        room_id = message.get("roomId")
        if not room_id or not message.get("id"):
            return
        already_seen = any(msg["id"] == message["id"] for msg in self.messages(room_id))
        self.reconcile(message)
        if already_seen or message.get("senderId") == self.user_id:
            return

        if room_id != self.active_room_id:
            self.unread[room_id] = self.unread.get(room_id, 0) + 1
        self.notifier.play_sound()
        if not self.focused:
            preview = message.get("content") or "sent an attachment"
            self.notifier.show("New message", f"{message.get('senderName')}: {preview}")

    def _on_typing_users(self, data: dict) -> None:
        if data.get("roomId"):
            self.typing_by_room[data["roomId"]] = list(data.get("users") or [])

    def _on_user_list(self, users: List[dict]) -> None:
        self.online_users = list(users or [])

    def _on_notification(self, notice: dict) -> None:
        self.notifications = [dict(notice), *self.notifications][:self.notification_limit]

    def _on_message_reaction(self, data: dict) -> None:
        if data.get("roomId") and data.get("messageId"):
            self._patch_message(data["roomId"], data["messageId"], reactions=data.get("reactions") or {})

    def _on_message_read(self, data: dict) -> None:
        if data.get("roomId") and data.get("messageId"):
            self._patch_message(data["roomId"], data["messageId"], readBy=list(data.get("readBy") or []))

    def _on_search_results(self, data: dict) -> None:
        self.search_results = {
            "roomId": data.get("roomId"),
            "query": data.get("query") or "",
            "results": list(data.get("results") or []),
        }
