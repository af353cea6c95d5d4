"""Per-room "currently typing" sets.

The server owns no timers: entries are added and removed only on explicit
typing signals (or when a user leaves/disconnects). Expiry after inactivity
is the sending client's job.
"""
from typing import Dict, List


class TypingTracker:
    """room_id -> {user_id -> display name}, in insertion order."""

    def __init__(self) -> None:
        self._typing: Dict[str, Dict[str, str]] = {}

    def set_typing(
        self, room_id: str, user_id: str, display_name: str, is_typing: bool
    ) -> List[str]:
        """Add or remove ``user_id`` and return the room's typing names."""
        room_typing = self._typing.setdefault(room_id, {})
        if is_typing:
            room_typing[user_id] = display_name
        else:
            room_typing.pop(user_id, None)
        return self.users(room_id)

    def clear(self, room_id: str, user_id: str) -> List[str]:
        return self.set_typing(room_id, user_id, "", False)

    def users(self, room_id: str) -> List[str]:
        return list(self._typing.get(room_id, {}).values())
