"""
Change Feed

Monotonic version counter plus a bounded event log, so observers can
poll, subscribe, or await the next change instead of diffing snapshots.
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, List, Tuple
import asyncio
import logging

from .clock import SystemClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    version: int
    topic: str  # e.g. "incident.created", "subject.updated"
    entity_id: str
    occurred_at: datetime


Subscriber = Callable[[ChangeEvent], None]


class ChangeFeed:

    def __init__(self, clock=None, max_events: int = 1000):
        self._clock = clock or SystemClock()
        self._version = 0
        self._events: Deque[ChangeEvent] = deque(maxlen=max_events)
        self._subscribers: List[Subscriber] = []
        self._waiters: List[asyncio.Future] = []

    @property
    def version(self) -> int:
        return self._version

    def publish(self, topic: str, entity_id: str) -> ChangeEvent:
        self._version += 1
        event = ChangeEvent(
            version=self._version,
            topic=topic,
            entity_id=entity_id,
            occurred_at=self._clock.now(),
        )
        self._events.append(event)

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Change subscriber failed on %s", topic)

        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(event.version)
        return event

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def poll(self, since: int = 0) -> Tuple[ChangeEvent, ...]:
        """Events with version > since still held in the log."""
        return tuple(e for e in self._events if e.version > since)

    async def wait_for_change(self, since: int, timeout: float) -> Tuple[ChangeEvent, ...]:
        """Wait until version > since (or timeout); returns the new events."""
        if self._version > since:
            return self.poll(since)
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await asyncio.wait_for(waiter, timeout=timeout)
        except asyncio.TimeoutError:
            return ()
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
        return self.poll(since)
