"""
Injectable Clock
================

Every time read in the engine goes through a clock object so cache TTLs
and notification expiry are deterministic under test.

MODES:
======
1. SystemClock: real UTC wall time
2. ManualClock: time only moves when advance() is called
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional


class SystemClock:
    """Live clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return "SystemClock()"


@dataclass
class ManualClock:
    """
    Clock that only moves when told to.

    GUARANTEES:
    ===========
    - now() never reads system time
    - Time never moves backwards
    - Every advance is logged for inspection
    """
    _current: datetime = field(
        default_factory=lambda: datetime(2024, 1, 1, tzinfo=timezone.utc)
    )
    _advances: List[float] = field(default_factory=list)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float) -> datetime:
        """Move time forward by seconds and return the new time."""
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._current = self._current + timedelta(seconds=seconds)
        self._advances.append(seconds)
        return self._current

    def tick_count(self) -> int:
        return len(self._advances)

    @classmethod
    def starting_at(cls, start: Optional[datetime] = None) -> 'ManualClock':
        if start is None:
            return cls()
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        return cls(_current=start)

    def __repr__(self) -> str:
        return f"ManualClock({self._current.isoformat()}, advances={len(self._advances)})"
