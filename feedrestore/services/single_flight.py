"""
In-flight request de-duplication.

A SingleFlight maps a string key to the one computation that produces its
value. The first caller for a key starts the computation; concurrent and
later callers await the same task. The mutex only guards the map, never the
computation itself.

Completed entries (successful or failed) are kept for the lifetime of the
instance, so the same key is never computed twice. A computation abandoned
by every waiter before it finished is cancelled and forgotten, so the next
caller starts a fresh one.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Dict, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Args:
        name: Label used in log messages
        forget_failures: Drop entries whose computation raised, so the next
            caller retries instead of receiving the stored error
    """

    def __init__(self, name: str = "single-flight", forget_failures: bool = False):
        self.name = name
        self.forget_failures = forget_failures
        self._mutex = threading.Lock()
        self._tasks: Dict[str, asyncio.Future] = {}
        self._waiters: Dict[str, int] = {}

    async def once(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Return the shared result for ``key``, starting ``factory()`` only if
        no computation for the key exists yet.

        Cancelling one waiter never cancels the computation for the others.
        """
        with self._mutex:
            task = self._tasks.get(key)
            if task is None or task.cancelled():
                logger.debug(f"[{self.name}] starting computation for {key}")
                task = asyncio.ensure_future(factory())
                self._tasks[key] = task
                self._waiters[key] = 0
            self._waiters[key] += 1

        try:
            return await asyncio.shield(task)
        finally:
            self._release(key, task)

    def _release(self, key: str, task: asyncio.Future) -> None:
        with self._mutex:
            if self._tasks.get(key) is not task:
                return
            self._waiters[key] -= 1
            if task.done():
                if task.cancelled() or (self.forget_failures and task.exception() is not None):
                    del self._tasks[key]
                    del self._waiters[key]
                return
            if self._waiters[key] == 0:
                logger.debug(f"[{self.name}] computation for {key} abandoned by all waiters")
                task.cancel()
                del self._tasks[key]
                del self._waiters[key]

    def in_flight(self, key: str) -> bool:
        with self._mutex:
            task = self._tasks.get(key)
            return task is not None and not task.done()

    def __contains__(self, key: str) -> bool:
        with self._mutex:
            return key in self._tasks

    def __len__(self) -> int:
        with self._mutex:
            return len(self._tasks)
