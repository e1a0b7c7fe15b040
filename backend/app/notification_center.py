"""Per-session toast queue.

The board pushes user-facing notifications here; the browser drains them
with each board response or from the notifications endpoint.
"""

import logging
from collections import deque
from typing import Deque, List

from app.models.pipeline import Notification, NotificationLevel

logger = logging.getLogger(__name__)

_MAX_PENDING = 100


class NotificationCenter:
    def __init__(self, max_pending: int = _MAX_PENDING):
        self._pending: Deque[Notification] = deque(maxlen=max_pending)

    def push(self, level: NotificationLevel, message: str) -> Notification:
        notification = Notification(level=level, message=message)
        self._pending.append(notification)
        logger.debug("Notification queued (%s): %s", level.value, message)
        return notification

    def success(self, message: str) -> Notification:
        return self.push(NotificationLevel.SUCCESS, message)

    def error(self, message: str) -> Notification:
        return self.push(NotificationLevel.ERROR, message)

    def info(self, message: str) -> Notification:
        return self.push(NotificationLevel.INFO, message)

    def peek(self) -> List[Notification]:
        return list(self._pending)

    def drain(self) -> List[Notification]:
        drained = list(self._pending)
        self._pending.clear()
        return drained

    def __len__(self) -> int:
        return len(self._pending)
