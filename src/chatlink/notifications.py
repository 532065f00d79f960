"""User-facing notification sinks."""

from __future__ import annotations

from enum import Enum
from typing import Protocol

import structlog

logger = structlog.get_logger()


class NotificationKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class NotificationSink(Protocol):
    """Receives feedback for the dashboard after every terminal transition."""

    async def notify(self, kind: NotificationKind, message: str) -> None:
        ...


class LogNotificationSink:
    """Writes notifications to the structured log."""

    async def notify(self, kind: NotificationKind, message: str) -> None:
        log = logger.warning if kind is NotificationKind.ERROR else logger.info
        log("notifications.sent", kind=kind.value, message=message)
