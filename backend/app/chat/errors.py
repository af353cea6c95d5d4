"""Error taxonomy for chat operations.

Nothing here is fatal to the process or to a connection. The WebSocket
router turns these into negative acknowledgements or ``room_error`` events;
``message`` is the user-facing text sent to the client.
"""
from typing import Optional, Union


class ChatError(Exception):
    """Base class for errors surfaced to a client."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    """Missing or invalid user input (username, room name)."""


class ConflictError(ChatError):
    """A room with the derived id already exists."""


class NotFoundError(ChatError):
    """Unknown room, message, or recipient."""


class RecipientOfflineError(NotFoundError):
    """Direct message target has no live connection."""

    def __init__(self, message: str = "User offline") -> None:
        super().__init__(message)


class ProtocolError(ChatError):
    """An inbound frame failed to decode.

    ``ack_id`` is recovered from the raw frame when possible so the sender
    can still be answered with a negative acknowledgement.
    """

    def __init__(self, message: str, ack_id: Optional[Union[str, int]] = None) -> None:
        super().__init__(message)
        self.ack_id = ack_id
