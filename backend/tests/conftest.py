"""Shared test fixtures and configuration for backend tests."""
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.chat.session import ChatSession
from app.config import AppSettings, ChatSettings
from app.main import create_app


@pytest.fixture
def app():
    """A fresh app (and ChatSession) per test so no chat state leaks."""
    return create_app(AppSettings())


@pytest.fixture
def api_client(app):
    """Provide a TestClient for a fresh FastAPI app.

    Used as a context manager so every WebSocket opened in a test shares
    one event loop (the session's dispatch lock lives on it).
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def session():
    return ChatSession(ChatSettings())


def make_websocket():
    """A fake WebSocket recording every frame sent to it."""
    ws = MagicMock()
    ws.accept = AsyncMock()
    ws.send_json = AsyncMock()
    ws.close = AsyncMock()
    return ws


def sent_frames(ws, event=None):
    """Frames sent to a fake WebSocket, optionally filtered by event name."""
    frames = [call.args[0] for call in ws.send_json.call_args_list]
    if event is None:
        return frames
    return [frame for frame in frames if frame["event"] == event]


def receive_until(ws, event):
    """Read frames from a TestClient WebSocket until ``event`` arrives.

    Returns:
        (matching frame, every frame read including the match)
    """
    seen = []
    while True:
        frame = ws.receive_json()
        seen.append(frame)
        if frame["event"] == event:
            return frame, seen


def join(ws, username, avatar_color=None, ack_id="join"):
    """Perform the user_join handshake and return the acknowledged user."""
    data = {"username": username}
    if avatar_color:
        data["avatarColor"] = avatar_color
    ws.send_json({"event": "user_join", "data": data, "ackId": ack_id})
    ack, seen = receive_until(ws, "ack")
    assert ack["ackId"] == ack_id
    return ack["data"], seen
