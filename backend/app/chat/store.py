"""Per-room bounded message logs with cursor pagination.

Each room keeps an append-only list in storage order. Once a log exceeds
its capacity the oldest messages are evicted; evicted content is gone.

Cursors are ``createdAt`` timestamps. ``append`` keeps timestamps strictly
increasing within a room, so a cursor always identifies exactly one message
and walking backwards page by page never skips or repeats a message.
"""
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .models import Message, next_timestamp

logger = logging.getLogger(__name__)

# Default room capacity (messages)
DEFAULT_CAPACITY = 500

# Default page size for history delivery and load_messages
DEFAULT_PAGE_SIZE = 25


class HistoryPage(BaseModel):
    """One page of history, oldest first."""
    messages: List[Message] = Field(default_factory=list)
    nextCursor: Optional[str] = None
    hasMore: bool = False

    def to_client(self) -> dict:
        return {
            "messages": [msg.to_client() for msg in self.messages],
            "nextCursor": self.nextCursor,
            "hasMore": self.hasMore,
        }


class MessageStore:
    """Holds every room's message log.

    Not thread-safe; all access happens on the server's event loop.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self.capacity = capacity
        # room_id -> messages in storage order
        self._logs: Dict[str, List[Message]] = {}

    def append(self, room_id: str, message: Message) -> Message:
        """Store a message, evicting from the head once over capacity.

        Returns:
            The stored message. Its ``createdAt`` (and ``deliveredAt``) may
            have been moved forward to stay strictly after the previous
            message in the room.
        """
        log = self._logs.setdefault(room_id, [])
        if log and message.createdAt <= log[-1].createdAt:
            message.createdAt = next_timestamp(log[-1].createdAt)
            message.deliveredAt = message.createdAt
        log.append(message)

        overflow = len(log) - self.capacity
        if overflow > 0:
            del log[:overflow]
            logger.debug(f"[Store] Evicted {overflow} message(s) from room {room_id}")
        return message

    def history(self, room_id: str) -> List[Message]:
        return list(self._logs.get(room_id, []))

    def count(self, room_id: str) -> int:
        return len(self._logs.get(room_id, []))

    def find_by_id(self, room_id: str, message_id: str) -> Optional[Message]:
        for message in self._logs.get(room_id, []):
            if message.id == message_id:
                return message
        return None

    def latest_page(self, room_id: str, page_size: int = DEFAULT_PAGE_SIZE) -> HistoryPage:
        """The newest ``page_size`` messages in ascending time order."""
        return self.page_before(room_id, None, page_size)

    def page_before(
        self,
        room_id: str,
        cursor: Optional[str],
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> HistoryPage:
        """Up to ``page_size`` messages immediately preceding ``cursor``.

        Args:
            room_id: Room to page through.
            cursor: ``createdAt`` of the oldest message the caller already
                has. ``None``, or a timestamp not present in the log, means
                "from the end of the log".
            page_size: Maximum number of messages to return.

        Returns:
            HistoryPage whose ``nextCursor`` is the ``createdAt`` of the first
            returned message (``None`` when empty) and whose ``hasMore`` says
            whether anything remains before the returned slice.
        """
        log = self._logs.get(room_id, [])

        end = len(log)
        if cursor:
            for index, message in enumerate(log):
                if message.createdAt == cursor:
                    end = index
                    break

        start = max(0, end - page_size)
        chunk = log[start:end]
        return HistoryPage(
            messages=chunk,
            nextCursor=chunk[0].createdAt if chunk else None,
            hasMore=start > 0,
        )

    def search(self, room_id: str, query: str, limit: Optional[int] = None) -> List[Message]:
        """Case-insensitive substring match on content, in log order.

        With ``limit`` only the newest ``limit`` matches are returned.
        """
        needle = query.casefold()
        matches = [
            msg for msg in self._logs.get(room_id, [])
            if needle in msg.content.casefold()
        ]
        if limit is not None:
            matches = matches[-limit:] if limit > 0 else []
        return matches
