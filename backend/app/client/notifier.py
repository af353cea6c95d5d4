"""Notifier interface for new-message alerts on the client.

The state reducer calls a Notifier whenever a message from someone else
arrives: ``play_sound()`` always, ``show()`` only while the client is not
focused. Front ends plug in their own implementation; LoggingNotifier is
the default for headless use.
"""
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Abstract base class for client alert sinks."""

    @abstractmethod
    def play_sound(self) -> None:
        """Audible cue for a new incoming message."""
        pass

    @abstractmethod
    def show(self, title: str, body: str) -> None:
        """Out-of-focus notification (desktop toast, terminal bell, ...).

        Args:
            title: Short headline, e.g. "New message".
            body: "<sender>: <content>" preview.
        """
        pass


class LoggingNotifier(Notifier):
    """Notifier that only writes to the log."""

    def play_sound(self) -> None:
        logger.debug("[Client] *ding*")

    def show(self, title: str, body: str) -> None:
        logger.info(f"[Client] {title}: {body}")
