"""Chat router providing the real-time WebSocket endpoint.

This module provides:
    - WebSocket /ws/chat: Real-time chat messaging

The WebSocket protocol supports:
    - Join handshake with display name and avatar colour
    - Room join/leave/create with per-room history delivery
    - Room and direct messages with acknowledgement and optimistic-send echo
    - Typing indicators
    - Read receipts and reactions
    - History pagination and in-room search

Protocol Events (client -> server):
    - user_join: Register a display name (ack: {ok, user} | {ok: false, error})
    - join_room / leave_room / create_room
    - send_message: Room message (ack: {ok, message})
    - private_message: Direct message (ack: {ok, message, roomId} | {ok: false, error})
    - typing, load_messages, message_read, message_reaction, search_messages

Frames are decoded by app.chat.protocol; the chat state itself lives in the
ChatSession stored on ``app.state.chat_session``.
"""
import logging
from typing import Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.requests import HTTPConnection

from .errors import ChatError, ProtocolError
from .protocol import (
    CreateRoomFrame,
    Frame,
    JoinRoomFrame,
    LeaveRoomFrame,
    LoadMessagesFrame,
    MessageReactionFrame,
    MessageReadFrame,
    PrivateMessageFrame,
    SearchMessagesFrame,
    SendMessageFrame,
    TypingFrame,
    UserJoinFrame,
    ack_frame,
    decode_frame,
)
from .session import ChatSession

logger = logging.getLogger(__name__)

router = APIRouter()

# A handler returns the acknowledgement payload, or None when the event
# produces no acknowledgement.
Handler = Callable[[ChatSession, str, Frame], Awaitable[Optional[dict]]]


def get_session(connection: HTTPConnection) -> ChatSession:
    """Dependency returning the application's ChatSession."""
    return connection.app.state.chat_session


# =============================================================================
# Event handlers
# =============================================================================


async def on_user_join(session: ChatSession, connection_id: str, frame: UserJoinFrame) -> dict:
    try:
        user = await session.join(connection_id, frame.data.username, frame.data.avatarColor)
    except ChatError as e:
        logger.info(f"[WS] Join rejected for {connection_id}: {e.message}")
        return {"ok": False, "error": e.message}
    return {"ok": True, "user": user.to_client()}


async def on_join_room(session: ChatSession, connection_id: str, frame: JoinRoomFrame) -> None:
    await session.join_room(connection_id, frame.data.roomId)


async def on_leave_room(session: ChatSession, connection_id: str, frame: LeaveRoomFrame) -> None:
    await session.leave_room(connection_id, frame.data.roomId)


async def on_create_room(
    session: ChatSession, connection_id: str, frame: CreateRoomFrame
) -> Optional[dict]:
    data = frame.data
    try:
        room = await session.create_room(connection_id, data.name, data.description, data.isPrivate)
    except ChatError as e:
        await session.connections.send(connection_id, "room_error", {"error": e.message})
        return {"ok": False, "error": e.message}
    if room is None:
        return None
    return {"ok": True, "room": room.to_client()}


async def on_send_message(
    session: ChatSession, connection_id: str, frame: SendMessageFrame
) -> Optional[dict]:
    data = frame.data
    message = await session.send(
        connection_id, data.roomId, data.content, data.attachments, data.clientTempId
    )
    if message is None:
        return None
    return {"ok": True, "message": message.to_client()}


async def on_private_message(
    session: ChatSession, connection_id: str, frame: PrivateMessageFrame
) -> dict:
    data = frame.data
    try:
        message, room_id = await session.send_direct(
            connection_id, data.to, data.content, data.attachments, data.clientTempId
        )
    except ChatError as e:
        return {"ok": False, "error": e.message}
    return {"ok": True, "message": message.to_client(), "roomId": room_id}


async def on_typing(session: ChatSession, connection_id: str, frame: TypingFrame) -> None:
    await session.set_typing(connection_id, frame.data.roomId, frame.data.isTyping)


async def on_load_messages(
    session: ChatSession, connection_id: str, frame: LoadMessagesFrame
) -> None:
    data = frame.data
    await session.load_messages(connection_id, data.roomId, data.cursor, data.limit)


async def on_message_read(
    session: ChatSession, connection_id: str, frame: MessageReadFrame
) -> None:
    data = frame.data
    await session.mark_read(connection_id, data.roomId, data.messageId, data.readerId)


async def on_message_reaction(
    session: ChatSession, connection_id: str, frame: MessageReactionFrame
) -> None:
    data = frame.data
    await session.toggle_reaction(connection_id, data.roomId, data.messageId, data.reaction)


async def on_search_messages(
    session: ChatSession, connection_id: str, frame: SearchMessagesFrame
) -> None:
    await session.search(connection_id, frame.data.roomId, frame.data.query)


HANDLERS: Dict[str, Handler] = {
    "user_join": on_user_join,
    "join_room": on_join_room,
    "leave_room": on_leave_room,
    "create_room": on_create_room,
    "send_message": on_send_message,
    "private_message": on_private_message,
    "typing": on_typing,
    "load_messages": on_load_messages,
    "message_read": on_message_read,
    "message_reaction": on_message_reaction,
    "search_messages": on_search_messages,
}


async def dispatch(session: ChatSession, connection_id: str, frame: Frame) -> None:
    """Run one decoded frame to completion and send its acknowledgement."""
    handler = HANDLERS[frame.event]
    ack = await handler(session, connection_id, frame)
    if ack is not None and frame.ackId is not None:
        await session.connections.send_frame(connection_id, ack_frame(frame.ackId, ack))


# =============================================================================
# WebSocket endpoint
# =============================================================================


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    session: ChatSession = Depends(get_session),
) -> None:
    """WebSocket endpoint for real-time chat.

    Protocol Flow:
        1. Client connects -> server assigns a connection id (= future user id)
        2. Client sends: {event: "user_join", data: {username, avatarColor}, ackId}
           -> room_users/room_joined/messages_history for each default room
           -> init_state {user, rooms, onlineUsers}
           -> user_list + notification to everyone
           -> ack {ok: true, user}
        3. Client sends events; each is handled to completion before the next
           event from any connection is processed
        4. On disconnect -> user vacates its rooms, user_list + notification

    Malformed frames never close the connection: they are answered with a
    negative acknowledgement when an ackId can be recovered, otherwise
    logged and dropped.
    """
    connection_id = await session.connect(websocket)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            # Text and binary frames carry the same JSON envelope
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue

            try:
                frame = decode_frame(raw)
            except ProtocolError as e:
                logger.warning(f"[WS] Rejected frame from {connection_id}: {e.message}")
                if e.ack_id is not None:
                    await session.connections.send_frame(
                        connection_id, ack_frame(e.ack_id, {"ok": False, "error": e.message})
                    )
                continue

            logger.debug("[WS] %s received: event=%s", connection_id, frame.event)
            async with session.dispatch_lock:
                try:
                    await dispatch(session, connection_id, frame)
                except Exception as e:
                    logger.error(f"[WS] Failed to handle {frame.event} from {connection_id}: {e}")

    except WebSocketDisconnect:
        logger.info(f"[WS] Connection {connection_id} closed")
    finally:
        async with session.dispatch_lock:
            await session.disconnect(connection_id)
