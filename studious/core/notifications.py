"""Transient user-facing notifications (toasts) raised by the chat engine."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

NotificationListener = Callable[["Notification"], None]


@dataclass
class Notification:
    kind: str  # success | error | info | warning
    message: str
    conversation_id: Optional[str] = None
    message_count: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "conversation_id": self.conversation_id,
            "message_count": self.message_count,
            "created_at": self.created_at.isoformat(),
        }


class Notifier:
    """Keeps a bounded history of notifications and fans them out to listeners."""

    def __init__(self, max_history: int = 100):
        self.max_history = max_history
        self.history: List[Notification] = []
        self._listeners: List[NotificationListener] = []

    def add_listener(self, listener: NotificationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    def notify(self, notification: Notification) -> Notification:
        self.history.append(notification)
        if len(self.history) > self.max_history:
            del self.history[: len(self.history) - self.max_history]
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}")
        return notification

    def info(self, message: str, **kwargs) -> Notification:
        return self.notify(Notification("info", message, **kwargs))

    def success(self, message: str, **kwargs) -> Notification:
        return self.notify(Notification("success", message, **kwargs))

    def warning(self, message: str, **kwargs) -> Notification:
        return self.notify(Notification("warning", message, **kwargs))

    def error(self, message: str, **kwargs) -> Notification:
        return self.notify(Notification("error", message, **kwargs))
