"""Message construction and attachment validation for the delivery path.

Attachments are carried inline. Each one is normalised (name truncated,
type defaulted, size clamped) and dropped silently when its payload is
missing or larger than 1.5x the size cap; a message is never rejected
because of its attachments.
"""
import logging
from typing import Iterable, List, Optional

from .models import Attachment, Message, User, new_id, utc_now_iso
from .protocol import AttachmentInput

logger = logging.getLogger(__name__)

DEFAULT_ATTACHMENT_TYPE = "application/octet-stream"

# Inline payload may exceed the declared size cap by this factor (base64 overhead)
INLINE_DATA_FACTOR = 1.5


def _coerce_size(value) -> int:
    try:
        size = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(size, 0)


def validate_attachments(
    attachments: Iterable[Optional[AttachmentInput]],
    max_size: int,
    name_limit: int = 120,
) -> List[Attachment]:
    """Normalise client attachments, dropping the ones that fail the guard.

    Args:
        attachments: Raw attachment inputs (``None`` entries are skipped).
        max_size: Size cap in bytes; declared sizes are clamped to it.
        name_limit: Maximum attachment name length.

    Returns:
        The accepted attachments, in their original order.
    """
    accepted = []
    for raw in attachments:
        if raw is None:
            continue
        if not raw.data or len(raw.data) > max_size * INLINE_DATA_FACTOR:
            logger.debug(f"[Delivery] Dropped attachment {raw.name!r}: missing or oversized payload")
            continue
        accepted.append(Attachment(
            id=raw.id or new_id(),
            name=(raw.name or "")[:name_limit] or "file",
            type=raw.type or DEFAULT_ATTACHMENT_TYPE,
            size=min(_coerce_size(raw.size), max_size),
            data=raw.data,
        ))
    return accepted


def build_message(
    sender: User,
    room_id: str,
    content: Optional[str],
    attachments: List[Attachment],
    client_temp_id: Optional[str] = None,
    is_private: bool = False,
) -> Message:
    """Create a message with a sender snapshot; the sender has already read it."""
    timestamp = utc_now_iso()
    return Message(
        clientTempId=client_temp_id or None,
        roomId=room_id,
        senderId=sender.id,
        senderName=sender.username,
        avatarColor=sender.avatarColor,
        content=(content or "").strip(),
        attachments=attachments,
        createdAt=timestamp,
        deliveredAt=timestamp,
        isPrivate=is_private,
        readBy=[sender.id],
        reactions={},
    )
