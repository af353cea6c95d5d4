"""Data models for the chat engine.

Field names are camelCase because these models double as the wire format:
``model_dump()`` of any model here is exactly what clients receive. Every
``to_client()`` projection returns fresh containers, so a payload that has
already been broadcast never aliases the live read-receipt or reaction
collections that later events mutate.
"""
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and ``Z``."""
    return format_timestamp(datetime.now(timezone.utc))


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def next_timestamp(previous: str) -> str:
    """The smallest timestamp strictly after ``previous`` (one millisecond later)."""
    parsed = datetime.fromisoformat(previous.replace("Z", "+00:00"))
    return format_timestamp(parsed + timedelta(milliseconds=1))


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Users
# =============================================================================


class UserStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class User(BaseModel):
    """Transient identity bound to one live connection.

    Attributes:
        id: Equals the connection id, so a reconnect is a new identity.
        username: Display name (not required to be unique).
        avatarColor: CSS colour for the avatar.
        status: online while the connection is live.
        joinedAt: When the join handshake completed.
        lastSeen: Stamped only on disconnect.
        rooms: Ids of rooms the user is currently a member of (ordered set).
    """
    id: str
    username: str
    avatarColor: str
    status: UserStatus = UserStatus.ONLINE
    joinedAt: str = Field(default_factory=utc_now_iso)
    lastSeen: Optional[str] = None
    rooms: List[str] = Field(default_factory=list)

    def add_room(self, room_id: str) -> None:
        if room_id not in self.rooms:
            self.rooms.append(room_id)

    def remove_room(self, room_id: str) -> None:
        if room_id in self.rooms:
            self.rooms.remove(room_id)

    def to_client(self) -> dict:
        return self.model_dump(mode="json")


# Projection used for room members that have no live user record
UNKNOWN_MEMBER_COLOR = "#6b7280"


def unknown_member(member_id: str) -> dict:
    return {
        "id": member_id,
        "username": "Unknown",
        "avatarColor": UNKNOWN_MEMBER_COLOR,
        "status": UserStatus.OFFLINE.value,
        "joinedAt": None,
        "lastSeen": None,
        "rooms": [],
    }


# =============================================================================
# Rooms
# =============================================================================


class Room(BaseModel):
    """Named channel or implicit direct conversation.

    ``members`` is membership, not presence: a member can be offline.
    """
    id: str
    name: str
    description: str = ""
    isPrivate: bool = False
    createdBy: str = "system"
    createdAt: str = Field(default_factory=utc_now_iso)
    members: List[str] = Field(default_factory=list)

    def add_member(self, user_id: str) -> None:
        if user_id not in self.members:
            self.members.append(user_id)

    def remove_member(self, user_id: str) -> None:
        if user_id in self.members:
            self.members.remove(user_id)

    def to_client(self) -> dict:
        data = self.model_dump(mode="json", exclude={"members"})
        data["memberCount"] = len(self.members)
        return data


# =============================================================================
# Messages
# =============================================================================


class Attachment(BaseModel):
    """Validated attachment carried inline with a message."""
    id: str = Field(default_factory=new_id)
    name: str
    type: str
    size: int
    data: str


class Message(BaseModel):
    """A chat message as stored in a room log.

    Attributes:
        id: Unique across the whole process.
        clientTempId: Correlation id supplied by the sending client.
        senderName, avatarColor: Sender snapshot taken at send time.
        content: Trimmed text; may be empty when attachments are present.
        readBy: Ordered set of reader ids, seeded with the sender.
        reactions: Symbol -> ordered set of user ids who applied it.
    """
    id: str = Field(default_factory=new_id)
    clientTempId: Optional[str] = None
    roomId: str
    senderId: str
    senderName: str
    avatarColor: str
    content: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    createdAt: str = Field(default_factory=utc_now_iso)
    deliveredAt: Optional[str] = None
    isPrivate: bool = False
    readBy: List[str] = Field(default_factory=list)
    reactions: Dict[str, List[str]] = Field(default_factory=dict)

    def mark_read(self, reader_id: str) -> List[str]:
        if reader_id not in self.readBy:
            self.readBy.append(reader_id)
        return list(self.readBy)

    def toggle_reaction(self, symbol: str, user_id: str) -> Dict[str, List[str]]:
        users = self.reactions.setdefault(symbol, [])
        if user_id in users:
            users.remove(user_id)
        else:
            users.append(user_id)
        # A symbol nobody applies any more is removed entirely
        if not users:
            del self.reactions[symbol]
        return self.reactions_to_client()

    def reactions_to_client(self) -> Dict[str, List[str]]:
        return {symbol: list(users) for symbol, users in self.reactions.items()}

    def to_client(self) -> dict:
        return self.model_dump(mode="json")


# =============================================================================
# Notifications
# =============================================================================


class NotificationType(str, Enum):
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    ROOM_CREATED = "room_created"
    MESSAGE = "message"
    ERROR = "error"


class Notification(BaseModel):
    """Ephemeral process-wide event; the server keeps no history of these."""
    id: str = Field(default_factory=new_id)
    type: NotificationType
    message: str
    timestamp: str = Field(default_factory=utc_now_iso)
    roomId: Optional[str] = None

    def to_client(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)
