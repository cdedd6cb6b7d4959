from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from uuid import uuid4

logger = logging.getLogger(__name__)

DEFAULT_CAP = 200


@dataclass(frozen=True)
class Notification:
    id: str
    user_id: str
    type: str
    title: str
    message: str
    action_url: str | None = None
    is_read: bool = False
    created_at: datetime | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class NotificationLog:
    """Bounded per-user log, newest first; the oldest entry drops once a user hits the cap."""

    def __init__(self, *, cap: int = DEFAULT_CAP) -> None:
        if cap <= 0:
            raise ValueError('Notification cap must be positive')
        self.cap = cap
        self._lock = threading.Lock()
        self._entries: dict[str, deque[Notification]] = {}

    def enqueue(
        self,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str,
        action_url: str | None = None,
    ) -> Notification:
        notification = Notification(
            id=str(uuid4()),
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            created_at=_now(),
        )
        with self._lock:
            entries = self._entries.setdefault(user_id, deque(maxlen=self.cap))
            entries.appendleft(notification)
        return notification

    def notify(self, **kwargs) -> Notification | None:
        """Fire-and-forget enqueue: a failure is logged, never raised to the caller."""
        try:
            return self.enqueue(**kwargs)
        except Exception:
            logger.exception('Notification enqueue failed for %s', kwargs.get('user_id'))
            return None

    def list_for(self, user_id: str, *, unread_only: bool = False) -> list[Notification]:
        with self._lock:
            entries = list(self._entries.get(user_id, ()))
        if unread_only:
            return [entry for entry in entries if not entry.is_read]
        return entries

    def unread_count(self, user_id: str) -> int:
        return len(self.list_for(user_id, unread_only=True))

    def mark_read(self, user_id: str, notification_id: str) -> bool:
        with self._lock:
            entries = self._entries.get(user_id)
            if not entries:
                return False
            for index, entry in enumerate(entries):
                if entry.id == notification_id:
                    entries[index] = replace(entry, is_read=True)
                    return True
        return False

    def mark_all_read(self, user_id: str) -> int:
        with self._lock:
            entries = self._entries.get(user_id)
            if not entries:
                return 0
            changed = 0
            for index, entry in enumerate(entries):
                if not entry.is_read:
                    entries[index] = replace(entry, is_read=True)
                    changed += 1
        return changed
