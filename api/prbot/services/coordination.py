"""Key-scoped mutual exclusion for PR reconciliation."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import (
    AsyncContextManager,
    AsyncIterator,
    Awaitable,
    Callable,
    Protocol,
    TypeVar,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyedExecutor(Protocol):
    """Runs work exclusively per key; different keys never wait on each other."""

    def hold(self, key: str) -> AsyncContextManager[None]:
        """Async context manager holding the exclusive slot for `key`."""

    async def run(self, key: str, work: Callable[[], Awaitable[T]]) -> T:
        """Run `work` while holding the exclusive slot for `key`."""


class InMemoryKeyedLock:
    """Process-local lock table.

    Locks are created lazily on first use of a key and kept for the life of
    the process; the key space is bounded by the number of open PRs.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        # No await between lookup and insert, so this is atomic on the loop
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._lock_for(key)
        if lock.locked():
            logger.debug(f"Waiting for in-flight event on {key}")
        async with lock:
            yield

    async def run(self, key: str, work: Callable[[], Awaitable[T]]) -> T:
        async with self.hold(key):
            return await work()

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
