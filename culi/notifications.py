"""Transient user notifications (the equivalent of toast messages)."""

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

logger = logging.getLogger(__name__)


class NotificationVariant(str, Enum):
    """Visual weight of a notification."""

    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


@dataclass
class Notification:
    """A short message for the user."""

    title: str
    description: str | None = None
    variant: NotificationVariant = NotificationVariant.DEFAULT
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_error(self) -> bool:  # noqa: D102
        return self.variant == NotificationVariant.DESTRUCTIVE


class Notifier:
    """
    Collects notifications, logs them and forwards them to listeners.

    Only the most recent ``max_history`` notifications are kept.
    """

    def __init__(self, max_history: int = 50):
        self.history: deque[Notification] = deque(maxlen=max_history)
        self._listeners: list[Callable[[Notification], None]] = []

    def subscribe(self, listener: Callable[[Notification], None]) -> None:
        """Call ``listener`` for every future notification."""
        self._listeners.append(listener)

    def notify(
            self,
            title: str,
            description: str | None = None,
            variant: NotificationVariant = NotificationVariant.DEFAULT,
        ) -> Notification:
        """Publish a notification."""
        notification = Notification(title=title, description=description, variant=variant)
        self.history.append(notification)
        level = logging.WARNING if notification.is_error else logging.INFO
        logger.log(level, "%s%s", title, f": {description}" if description else "")
        for listener in self._listeners:
            listener(notification)
        return notification

    def error(self, title: str, description: str | None = None) -> Notification:
        """Publish a destructive notification."""
        return self.notify(title, description, NotificationVariant.DESTRUCTIVE)
