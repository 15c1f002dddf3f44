"""
Cross-process locking for files in the shared disk cache.

Several restore processes may share one cache directory. A process that
refreshes a cache file deletes and replaces it, so a reader in another
process must not open the file while that happens. Both sides take an
exclusive advisory lock on ``<file>.lock`` around their critical section.

The default primitive is filelock.AsyncFileLock. Advisory locks are best
effort: on filesystems without lock support the lock degrades to whatever
filelock can provide there.
"""
from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from pathlib import Path
from typing import Any, AsyncContextManager, AsyncIterator, Awaitable, Callable, Optional, TypeVar, Union

from filelock import AsyncFileLock

logger = logging.getLogger(__name__)

T = TypeVar("T")

LockFactory = Callable[[Path], AsyncContextManager[Any]]


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


class ContentLock:
    """
    Exclusive lock scoped to a single cache file path.

    Unrelated paths never contend. ``lock_factory`` replaces the OS lock with
    any async context manager built from the target path.
    """

    def __init__(self, lock_factory: Optional[LockFactory] = None, timeout: float = -1):
        self._lock_factory = lock_factory
        self.timeout = timeout

    def _create(self, path: Path) -> AsyncContextManager[Any]:
        if self._lock_factory is not None:
            return self._lock_factory(path)
        lock_file = lock_path_for(path)
        lock_file.parent.mkdir(parents=True, exist_ok=True)
        return AsyncFileLock(str(lock_file), timeout=self.timeout)

    @contextlib.asynccontextmanager
    async def hold(self, path: Path) -> AsyncIterator[None]:
        lock = self._create(path)
        logger.debug(f"Acquiring lock for {path}")
        async with lock:
            logger.debug(f"Acquired lock for {path}")
            yield

    async def with_lock(self, path: Path, action: Callable[[], Union[T, Awaitable[T]]]) -> T:
        """
        Run ``action`` while holding the lock for ``path`` and return its result.

        The lock is released on every exit path, including cancellation.
        """
        async with self.hold(path):
            result = action()
            if inspect.isawaitable(result):
                result = await result
            return result


class InProcessLockFactory:
    """
    Lock factory backed by asyncio.Lock objects keyed by path.

    Stands in for the OS lock where every contender lives in the same event
    loop, for example when simulating a second process in tests.
    """

    def __init__(self):
        self._locks: dict = {}

    def __call__(self, path: Path) -> asyncio.Lock:
        key = str(path)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock
