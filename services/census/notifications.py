"""User-facing notifications raised by census workflows."""

from __future__ import annotations

from collections import deque
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import Field

from shared.models.census import CamelModel
from shared.observability.logger import get_logger

logger = get_logger(__name__)


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notification(CamelModel):
    """A single non-fatal message surfaced to the operator."""

    level: NotificationLevel
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


_LOG_METHODS = {
    NotificationLevel.SUCCESS: "info",
    NotificationLevel.INFO: "info",
    NotificationLevel.WARNING: "warning",
    NotificationLevel.ERROR: "error",
}


class NotificationCenter:
    """Bounded queue of pending notifications.

    Every notification is logged when pushed; callers drain the queue to
    deliver pending messages with a response.
    """

    def __init__(self, *, max_pending: int = 100) -> None:
        self._pending: deque[Notification] = deque(maxlen=max_pending)

    def push(self, level: NotificationLevel, message: str, **context: Any) -> Notification:
        notification = Notification(level=level, message=message)
        self._pending.append(notification)
        log = getattr(logger.bind(**context), _LOG_METHODS[level])
        log("notification_pushed", level=level.value)
        return notification

    def success(self, message: str, **context: Any) -> Notification:
        return self.push(NotificationLevel.SUCCESS, message, **context)

    def warning(self, message: str, **context: Any) -> Notification:
        return self.push(NotificationLevel.WARNING, message, **context)

    def error(self, message: str, **context: Any) -> Notification:
        return self.push(NotificationLevel.ERROR, message, **context)

    @property
    def pending(self) -> tuple[Notification, ...]:
        return tuple(self._pending)

    def drain(self) -> list[Notification]:
        """Return and clear every pending notification."""

        drained = list(self._pending)
        self._pending.clear()
        return drained


__all__ = ["Notification", "NotificationCenter", "NotificationLevel"]
