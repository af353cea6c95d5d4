"""Room directory: room metadata and membership sets.

Rooms come from three places: the configured default public rooms (created
at construction), explicit ``create`` requests, and lazy ``ensure`` calls for
ids that are referenced before they exist (direct conversations, or any id a
client joins). Rooms are never deleted.

Direct-conversation ids have the form ``private:<idA>:<idB>`` with the two
participant ids sorted, so both participants always resolve the same room.
Named-room ids never contain ``:``, which keeps the two id spaces disjoint.
"""
import logging
import re
from typing import Dict, Iterable, List, Optional

from app.config import DefaultRoomSettings

from .errors import ConflictError, ValidationError
from .models import Room

logger = logging.getLogger(__name__)

DIRECT_PREFIX = "private"
DIRECT_DELIMITER = ":"

_WHITESPACE = re.compile(r"\s+")


def direct_conversation_id(user_a: str, user_b: str) -> str:
    """Symmetric room id for a two-party conversation."""
    return DIRECT_DELIMITER.join([DIRECT_PREFIX, *sorted([user_a, user_b])])


def is_direct_conversation(room_id: str) -> bool:
    return room_id.startswith(DIRECT_PREFIX + DIRECT_DELIMITER)


def room_slug(name: str) -> str:
    """Derive a named-room id: lower-cased, whitespace runs collapsed to '-'."""
    slug = _WHITESPACE.sub("-", name.strip().lower())
    return slug.replace(DIRECT_DELIMITER, "-")


class RoomDirectory:
    """Maps room ids to ``Room`` records."""

    def __init__(self, default_rooms: Iterable[DefaultRoomSettings] = ()) -> None:
        self.rooms: Dict[str, Room] = {}
        self.default_room_ids: List[str] = []
        for default in default_rooms:
            self.rooms[default.id] = Room(
                id=default.id,
                name=default.name,
                description=default.description,
                isPrivate=False,
                createdBy="system",
            )
            self.default_room_ids.append(default.id)

    def get(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(room_id)

    def exists(self, room_id: str) -> bool:
        return room_id in self.rooms

    def list(self) -> List[Room]:
        return list(self.rooms.values())

    def ensure(self, room_id: str) -> Room:
        """Return the room, creating a private room named after its id if absent."""
        room = self.rooms.get(room_id)
        if room is None:
            room = Room(
                id=room_id,
                name=room_id,
                description="Private room",
                isPrivate=True,
                createdBy="system",
            )
            self.rooms[room_id] = room
            logger.info(f"[Rooms] Lazily created private room {room_id}")
        return room

    def create(
        self,
        name: Optional[str],
        description: Optional[str],
        is_private: bool,
        creator: str,
    ) -> Room:
        """Create a named room.

        Raises:
            ValidationError: The name is blank.
            ConflictError: A room with the derived id already exists.
        """
        trimmed = (name or "").strip()
        if not trimmed:
            raise ValidationError("Room name is required")

        room_id = room_slug(trimmed)
        if room_id in self.rooms:
            raise ConflictError("Room already exists")

        room = Room(
            id=room_id,
            name=trimmed,
            description=(description or "").strip() or "Custom room",
            isPrivate=bool(is_private),
            createdBy=creator,
        )
        self.rooms[room_id] = room
        logger.info(f"[Rooms] {creator} created room {room_id}")
        return room

    def add_member(self, room_id: str, user_id: str) -> Room:
        room = self.ensure(room_id)
        room.add_member(user_id)
        return room

    def remove_member(self, room_id: str, user_id: str) -> Optional[Room]:
        room = self.rooms.get(room_id)
        if room is not None:
            room.remove_member(user_id)
        return room
