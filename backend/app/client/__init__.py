"""Python client for the chatroom server.

Usage:
    from app.client import ChatClient, ClientState

    client = ChatClient()
    client.login("Ada")
    await client.run()
"""
from .attachments import encode_attachments, encode_bytes, encode_file
from .connection import ChatClient
from .notifier import LoggingNotifier, Notifier
from .profile import Profile, ProfileStore
from .state import ClientState

__all__ = [
    "ChatClient",
    "ClientState",
    "LoggingNotifier",
    "Notifier",
    "Profile",
    "ProfileStore",
    "encode_attachments",
    "encode_bytes",
    "encode_file",
]
