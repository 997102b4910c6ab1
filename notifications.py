"""User notifications: envelope validation and fire-and-forget dispatch."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict

from linkup.ids import generate_uuid


Notification = Dict[str, Any]

NOTIFICATION_TYPES = {"application", "team_invite", "message", "system", "event"}
NOTIFICATION_PROCEDURE = "create_notification"

logger = logging.getLogger("linkup.notifications")


@dataclass
class NotificationValidationError(ValueError):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


def _raise(code: str, message: str, path: str | None = None) -> None:
    raise NotificationValidationError(code=code, message=message, path=path)


def validate_notification(notification: Any) -> None:
    if not isinstance(notification, dict):
        _raise("NOTIFICATION_INVALID", "notification must be object")
    if not isinstance(notification.get("id"), str):
        _raise("NOTIFICATION_ID_INVALID", "id must be string", "id")
    user_id = notification.get("user_id")
    if not isinstance(user_id, str) or not user_id:
        _raise("NOTIFICATION_USER_INVALID", "user_id must be non-empty string", "user_id")
    if notification.get("type") not in NOTIFICATION_TYPES:
        _raise("NOTIFICATION_TYPE_INVALID", f"type must be one of {sorted(NOTIFICATION_TYPES)}", "type")
    for field in ("title", "message"):
        if not isinstance(notification.get(field), str):
            _raise("NOTIFICATION_TEXT_INVALID", f"{field} must be string", field)
    link = notification.get("link")
    if link is not None and not isinstance(link, str):
        _raise("NOTIFICATION_LINK_INVALID", "link must be string or null", "link")


def make_notification(user_id: str, type: str, title: str, message: str, link: str | None = None) -> Notification:
    notification = {
        "id": generate_uuid(),
        "user_id": user_id,
        "type": type,
        "title": title,
        "message": message,
        "link": link,
        "created_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }
    validate_notification(notification)
    return notification


class NotificationDispatcher:
    def __init__(self, store, outbox: "NotificationOutbox | None" = None) -> None:
        self._store = store
        self._outbox = outbox

    def send(self, user_id: str | None, type: str, title: str, message: str, link: str | None = None) -> bool:
        """Deliver a notification. Failures are logged, never raised."""
        if not user_id:
            return False
        try:
            notification = make_notification(user_id, type, title, message, link)
            self._store.rpc(
                NOTIFICATION_PROCEDURE,
                {
                    "target_user": user_id,
                    "notif_type": type,
                    "notif_title": title,
                    "notif_message": message,
                    "notif_link": link,
                },
            )
            if self._outbox is not None:
                self._outbox.enqueue(copy.deepcopy(notification))
        except Exception as exc:
            logger.error("notification_failed user_id=%s type=%s error=%s", user_id, type, exc)
            return False
        return True
