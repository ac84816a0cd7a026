"""
Per-entity writer locks.

Every mutation of a Subject or Incident runs under that entity's lock.
When both are needed the incident lock is taken first, then the subject.
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional
import asyncio


class KeyedLocks:
    """One asyncio.Lock per key, created on first use."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def discard(self, key: str) -> None:
        """Drop an idle lock. Callers hold a reference while they wait."""
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class EntityLocks:
    """Subject and incident lock spaces with a fixed acquisition order."""

    def __init__(self):
        self.subjects = KeyedLocks()
        self.incidents = KeyedLocks()

    @asynccontextmanager
    async def hold(
        self,
        incident_id: Optional[str] = None,
        subject_id: Optional[str] = None
    ) -> AsyncIterator[None]:
        """Hold the incident lock, then the subject lock (either may be omitted)."""
        if incident_id is not None:
            async with self.incidents.lock(incident_id):
                if subject_id is not None:
                    async with self.subjects.lock(subject_id):
                        yield
                else:
                    yield
        elif subject_id is not None:
            async with self.subjects.lock(subject_id):
                yield
        else:
            yield
