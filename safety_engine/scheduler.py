"""
Environment Poller

One asyncio task per registered subject. Each task runs the poll
callback, then sleeps interval_seconds, until the subject is
unregistered, the poller stops, or the subject disappears.
"""

from __future__ import annotations
from typing import Any, Awaitable, Callable, Dict
import asyncio
import logging

from .contracts import SubjectNotFoundError

logger = logging.getLogger(__name__)


PollCallback = Callable[[str], Awaitable[Any]]


class EnvironmentPoller:

    def __init__(self, poll: PollCallback, interval_seconds: float = 45.0):
        self._poll = poll
        self._interval = interval_seconds
        self._tasks: Dict[str, asyncio.Task] = {}

    def register(self, subject_id: str) -> bool:
        """Start polling a subject. Returns False if it is already polled."""
        task = self._tasks.get(subject_id)
        if task is not None and not task.done():
            return False
        self._tasks[subject_id] = asyncio.get_running_loop().create_task(
            self._run(subject_id), name=f"env-poll-{subject_id}"
        )
        logger.info("Environment polling started for %s", subject_id)
        return True

    def unregister(self, subject_id: str) -> bool:
        task = self._tasks.pop(subject_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    def is_polling(self, subject_id: str) -> bool:
        task = self._tasks.get(subject_id)
        return task is not None and not task.done()

    @property
    def polled_subjects(self) -> tuple:
        return tuple(sid for sid, t in self._tasks.items() if not t.done())

    async def stop(self) -> None:
        """Cancel every task and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, subject_id: str) -> None:
        while True:
            try:
                await self._poll(subject_id)
            except SubjectNotFoundError:
                logger.info("Subject %s is gone; polling stopped", subject_id)
                self._tasks.pop(subject_id, None)
                return
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Environment poll failed for %s", subject_id)
            await asyncio.sleep(self._interval)
