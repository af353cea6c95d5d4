"""Notification builders for the process-wide fan-out.

Notifications are broadcast to every connection and never retained by the
server; clients keep their own short ring of recent ones.
"""
from typing import Optional

from .models import Message, Notification, NotificationType, Room, User

ATTACHMENT_PLACEHOLDER = "sent an attachment"


def build_notification(
    type_: NotificationType, message: str, room_id: Optional[str] = None
) -> Notification:
    return Notification(type=type_, message=message, roomId=room_id)


def user_joined(user: User) -> Notification:
    return build_notification(NotificationType.USER_JOINED, f"{user.username} joined the chat")


def user_left(user: User) -> Notification:
    return build_notification(NotificationType.USER_LEFT, f"{user.username} left the chat")


def room_created(user: User, room: Room) -> Notification:
    return build_notification(
        NotificationType.ROOM_CREATED, f"{user.username} created #{room.name}", room.id
    )


def message_sent(message: Message) -> Notification:
    summary = message.content or ATTACHMENT_PLACEHOLDER
    return build_notification(
        NotificationType.MESSAGE, f"{message.senderName}: {summary}", message.roomId
    )
