"""
Notification Lifecycle

Short-lived operator notifications. Each one lives for ttl_seconds:
removal is scheduled on the running event loop, and every read also
prunes expired entries against the injected clock, so expiry holds
even without a loop (and under a ManualClock in tests).
"""

from __future__ import annotations
from datetime import timedelta
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple
import asyncio
import logging
import uuid

from .clock import SystemClock
from .contracts import Notification, NotificationKind

logger = logging.getLogger(__name__)


class NotificationCenter:
    """Owns every Notification; live() is most-recent-first."""

    def __init__(
        self,
        clock=None,
        ttl_seconds: float = 5.0,
        history_limit: int = 200,
        on_change: Optional[Callable[[str, str], None]] = None
    ):
        self._clock = clock or SystemClock()
        self._ttl_seconds = ttl_seconds
        self._on_change = on_change
        self._live: List[Notification] = []
        self._history: Deque[Notification] = deque(maxlen=history_limit)
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def notify(self, title: str, message: str, kind: NotificationKind) -> Notification:
        now = self._clock.now()
        notification = Notification(
            notification_id=str(uuid.uuid4()),
            title=title,
            message=message,
            kind=kind,
            created_at=now,
            expires_at=now + timedelta(seconds=self._ttl_seconds),
        )
        self._live.insert(0, notification)
        self._history.append(notification)
        self._schedule_removal(notification.notification_id)
        logger.info("Notification [%s] %s: %s", kind.value, title, message)
        if self._on_change:
            self._on_change("notification.created", notification.notification_id)
        return notification

    def _schedule_removal(self, notification_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: read-time pruning handles expiry
        self._timers[notification_id] = loop.call_later(
            self._ttl_seconds, self._expire, notification_id
        )

    def _expire(self, notification_id: str) -> None:
        self._timers.pop(notification_id, None)
        if self._remove(notification_id) and self._on_change:
            self._on_change("notification.expired", notification_id)

    def _remove(self, notification_id: str) -> bool:
        before = len(self._live)
        self._live = [n for n in self._live if n.notification_id != notification_id]
        return len(self._live) != before

    def dismiss(self, notification_id: str) -> bool:
        """Remove a notification. Idempotent; True if it was live."""
        timer = self._timers.pop(notification_id, None)
        if timer is not None:
            timer.cancel()
        removed = self._remove(notification_id)
        if removed and self._on_change:
            self._on_change("notification.dismissed", notification_id)
        return removed

    def _prune(self) -> None:
        now = self._clock.now()
        for notification in [n for n in self._live if n.expires_at <= now]:
            timer = self._timers.pop(notification.notification_id, None)
            if timer is not None:
                timer.cancel()
            self._expire(notification.notification_id)

    def live(self) -> Tuple[Notification, ...]:
        self._prune()
        return tuple(self._live)

    def history(self) -> Tuple[Notification, ...]:
        """The most recent history_limit notifications, oldest first."""
        return tuple(self._history)

    def close(self) -> None:
        """Cancel pending removal timers."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
