"""In-memory outbox of dispatched notifications, bounded to the most recent entries."""

from __future__ import annotations

import copy
from collections import deque
from typing import Deque

from notifications import Notification, validate_notification


DEFAULT_MAXLEN = 500


class NotificationOutbox:
    def __init__(self, maxlen: int | None = DEFAULT_MAXLEN) -> None:
        self._items: Deque[Notification] = deque(maxlen=maxlen)

    def enqueue(self, notification: dict) -> None:
        validate_notification(notification)
        self._items.append(copy.deepcopy(notification))

    def pending(self, user_id: str | None = None) -> list[dict]:
        if user_id is None:
            return list(self._items)
        return [n for n in self._items if n.get("user_id") == user_id]

    def ack(self, notification_id: str) -> bool:
        for idx, item in enumerate(self._items):
            if item.get("id") == notification_id:
                del self._items[idx]
                return True
        return False

    def clear(self) -> None:
        self._items.clear()
