"""Chatroom application configuration.

Loads settings from ``chatroom.settings.yaml`` (non-secret configuration),
then applies a handful of environment overrides so container deployments
can tune the server without shipping a settings file:

  * PORT                -> server.port
  * CLIENT_URL          -> server.allowed_origins (single origin)
  * MAX_ROOM_MESSAGES   -> chat.max_room_messages
  * MAX_ATTACHMENT_SIZE -> chat.max_attachment_size (bytes)
  * LOG_LEVEL           -> logging.level

A ``.env`` file in the working directory is honoured.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chatroom.settings.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str       = "0.0.0.0"
    port:            int       = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if not isinstance(logging.getLevelName(value.upper()), int):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class DefaultRoomSettings(BaseModel):
    """A public room that exists from process start."""
    id:          str
    name:        str
    description: str = ""


class ChatSettings(BaseModel):
    max_room_messages:     int = Field(default=500, ge=1)
    max_attachment_size:   int = Field(default=2 * 1024 * 1024, ge=1)
    attachment_name_limit: int = Field(default=120, ge=1)
    history_page_size:     int = Field(default=25, ge=1)
    max_page_size:         int = Field(default=100, ge=1)
    search_result_limit:   int = Field(default=20, ge=1)
    max_username_length:   int = Field(default=40, ge=1)
    send_timeout:        float = Field(default=5.0, gt=0)
    avatar_colors: List[str] = Field(
        default_factory=lambda: ["#f97316", "#16a34a", "#2563eb", "#9333ea", "#f43f5e"]
    )
    default_rooms: List[DefaultRoomSettings] = Field(
        default_factory=lambda: [
            DefaultRoomSettings(
                id="general", name="General", description="Open discussion for everyone"
            ),
            DefaultRoomSettings(
                id="help-desk", name="Help Desk", description="Ask questions and get help"
            ),
        ]
    )


class ClientSettings(BaseModel):
    """Settings used by the Python chat client (app.client)."""
    server_url:               str   = "ws://localhost:5000/ws/chat"
    profile_path:             str   = "~/.chatroom/profile.json"
    typing_stop_delay:        float = 1.2
    history_page_size:        int   = 25
    notification_limit:       int   = 25
    error_notification_limit: int   = 20


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    client:  ClientSettings  = Field(default_factory=ClientSettings)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Fold the supported environment variables into raw settings data."""
    # An empty section ("server:" with nothing under it) loads as None
    data = {section: values for section, values in data.items() if values is not None}
    overrides = {
        "PORT":                ("server", "port"),
        "MAX_ROOM_MESSAGES":   ("chat", "max_room_messages"),
        "MAX_ATTACHMENT_SIZE": ("chat", "max_attachment_size"),
        "LOG_LEVEL":           ("logging", "level"),
    }
    for env_name, (section, key) in overrides.items():
        value = os.getenv(env_name)
        if value:
            data.setdefault(section, {})[key] = value
            logger.debug("Config override from %s", env_name)

    client_url = os.getenv("CLIENT_URL")
    if client_url:
        data.setdefault("server", {})["allowed_origins"] = [client_url]
    return data


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(path: Path = SETTINGS_FILE) -> AppSettings:
    """Load settings from YAML and the environment into an *AppSettings*."""
    load_dotenv()
    settings_data = _apply_env_overrides(_load_yaml(path))

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, max_room_messages=%s, default_rooms=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.chat.max_room_messages,
        [room.id for room in app_settings.chat.default_rooms],
    )
    return app_settings


@lru_cache(maxsize=1)
def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    return load_settings()
