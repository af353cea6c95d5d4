"""Wire protocol for the chat WebSocket.

Every inbound frame is a JSON object::

    {"event": "send_message", "data": {...}, "ackId": "42"}

``ackId`` is optional; when present the server answers once with::

    {"event": "ack", "ackId": "42", "data": {"ok": true, ...}}

Server-originated events are ``{"event": <name>, "data": <payload>}``.

Inbound frames form a closed tagged union keyed on ``event``.
``decode_frame`` validates a raw frame against it and raises
``ProtocolError`` for anything that does not fit, so handlers only ever
see well-typed payloads. Payload fields are optional where clients may
legitimately omit them; handlers treat a missing id as a no-op.
"""
import json
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ProtocolError

AckId = Union[str, int]


# =============================================================================
# Payloads
# =============================================================================


class Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class AttachmentInput(Payload):
    """Attachment as sent by a client; validated later by the delivery step."""
    id: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    size: Any = None
    data: Optional[str] = Field(default=None, validation_alias=AliasChoices("data", "inlineData"))


class _OutboundMessagePayload(Payload):
    content: Optional[str] = Field(default=None, validation_alias=AliasChoices("message", "content"))
    attachments: List[Optional[AttachmentInput]] = Field(default_factory=list)
    clientTempId: Optional[str] = None

    @field_validator("attachments", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class UserJoinPayload(Payload):
    username: Optional[str] = None
    avatarColor: Optional[str] = None


class RoomPayload(Payload):
    roomId: Optional[str] = None


class CreateRoomPayload(Payload):
    name: Optional[str] = None
    description: Optional[str] = None
    isPrivate: bool = False

    @field_validator("isPrivate", mode="before")
    @classmethod
    def _none_is_false(cls, value: Any) -> Any:
        return False if value is None else value


class SendMessagePayload(_OutboundMessagePayload):
    roomId: Optional[str] = None


class PrivateMessagePayload(_OutboundMessagePayload):
    to: Optional[str] = None


class TypingPayload(Payload):
    roomId: Optional[str] = None
    isTyping: bool = False

    @field_validator("isTyping", mode="before")
    @classmethod
    def _none_is_false(cls, value: Any) -> Any:
        return False if value is None else value


class LoadMessagesPayload(Payload):
    roomId: Optional[str] = None
    cursor: Optional[str] = None
    limit: Optional[int] = None


class MessageReadPayload(Payload):
    roomId: Optional[str] = None
    messageId: Optional[str] = None
    readerId: Optional[str] = None


class MessageReactionPayload(Payload):
    roomId: Optional[str] = None
    messageId: Optional[str] = None
    reaction: Optional[str] = None


class SearchMessagesPayload(Payload):
    roomId: Optional[str] = None
    query: Optional[str] = None


# =============================================================================
# Frames (tagged union on "event")
# =============================================================================


class Frame(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ackId: Optional[AckId] = None

    @model_validator(mode="before")
    @classmethod
    def _null_data(cls, value: Any) -> Any:
        if isinstance(value, dict) and value.get("data") is None:
            value = {**value, "data": {}}
        return value


class UserJoinFrame(Frame):
    event: Literal["user_join"]
    data: UserJoinPayload


class JoinRoomFrame(Frame):
    event: Literal["join_room"]
    data: RoomPayload


class LeaveRoomFrame(Frame):
    event: Literal["leave_room"]
    data: RoomPayload


class CreateRoomFrame(Frame):
    event: Literal["create_room"]
    data: CreateRoomPayload


class SendMessageFrame(Frame):
    event: Literal["send_message"]
    data: SendMessagePayload


class PrivateMessageFrame(Frame):
    event: Literal["private_message"]
    data: PrivateMessagePayload


class TypingFrame(Frame):
    event: Literal["typing"]
    data: TypingPayload


class LoadMessagesFrame(Frame):
    event: Literal["load_messages"]
    data: LoadMessagesPayload


class MessageReadFrame(Frame):
    event: Literal["message_read"]
    data: MessageReadPayload


class MessageReactionFrame(Frame):
    event: Literal["message_reaction"]
    data: MessageReactionPayload


class SearchMessagesFrame(Frame):
    event: Literal["search_messages"]
    data: SearchMessagesPayload


InboundFrame = Annotated[
    Union[
        UserJoinFrame,
        JoinRoomFrame,
        LeaveRoomFrame,
        CreateRoomFrame,
        SendMessageFrame,
        PrivateMessageFrame,
        TypingFrame,
        LoadMessagesFrame,
        MessageReadFrame,
        MessageReactionFrame,
        SearchMessagesFrame,
    ],
    Field(discriminator="event"),
]

_frame_adapter: TypeAdapter = TypeAdapter(InboundFrame)

INBOUND_EVENTS = frozenset(
    frame.model_fields["event"].annotation.__args__[0]
    for frame in Frame.__subclasses__()
)


def decode_frame(raw: Union[str, bytes, dict]) -> Frame:
    """Parse and validate one inbound frame.

    Raises:
        ProtocolError: The frame is not JSON, not an object, names an
            unknown event, or carries mistyped fields.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ProtocolError("Malformed frame: invalid JSON")

    if not isinstance(raw, dict):
        raise ProtocolError("Malformed frame: expected an object")

    ack_id = raw.get("ackId")
    if not isinstance(ack_id, (str, int)) or isinstance(ack_id, bool):
        ack_id = None

    event = raw.get("event")
    if not isinstance(event, str) or event not in INBOUND_EVENTS:
        raise ProtocolError(f"Unknown event: {event}", ack_id=ack_id)

    try:
        return _frame_adapter.validate_python(raw)
    except PydanticValidationError as exc:
        fields = ", ".join(
            ".".join(str(part) for part in error["loc"][1:]) or "frame"
            for error in exc.errors()
        )
        raise ProtocolError(f"Invalid {event} payload: {fields}", ack_id=ack_id)


# =============================================================================
# Outbound frames
# =============================================================================


def event_frame(event: str, data: Any) -> dict:
    return {"event": event, "data": data}


def ack_frame(ack_id: AckId, data: dict) -> dict:
    return {"event": "ack", "ackId": ack_id, "data": data}
