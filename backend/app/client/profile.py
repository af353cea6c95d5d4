"""Persisted login profile for the chat client.

The profile is the only state that survives a restart: the display name
and avatar colour used for the ``user_join`` handshake. It lives in a small
JSON file (``client.profile_path`` in chatroom.settings.yaml).
"""
import json
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


class Profile(BaseModel):
    username: str
    avatarColor: Optional[str] = None

    def to_join_payload(self) -> dict:
        return self.model_dump(exclude_none=True)


class ProfileStore:
    """Reads and writes the profile file."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> Optional[Profile]:
        """Return the saved profile, or None when absent or unreadable."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return Profile.model_validate(data)
        except (ValueError, PydanticValidationError) as e:
            logger.warning(f"[Client] Ignoring unreadable profile {self.path}: {e}")
            return None

    def save(self, profile: Profile) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(profile.model_dump(exclude_none=True)), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
