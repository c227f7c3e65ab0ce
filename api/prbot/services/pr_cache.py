"""Keyed store of PR tracking records with a sliding retention window.

Backends:
- InMemoryPRStateCache: process-local cachetools TTLCache
- SQLitePRStateCache: aiosqlite file that survives restarts

Every `set` restarts the entry's retention window. A missing entry is an
expected state (the PR was never announced or already finished) and is
returned as None.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

import aiosqlite
from cachetools import TTLCache  # type: ignore[import-untyped]
from prbot.core.config import THREE_DAYS_IN_SECONDS, Settings
from prbot.core.exceptions import CacheOperationError
from prbot.models.tracking import PRTrackingRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PRStateCache(Protocol):
    """Storage contract for PR tracking records."""

    async def get(self, key: str) -> Optional[PRTrackingRecord]:
        """Return the record, or None if absent or expired."""

    async def set(self, key: str, record: PRTrackingRecord) -> None:
        """Store the record and restart its retention window."""

    async def delete(self, key: str) -> bool:
        """Remove the record. Returns True if one existed."""

    async def purge_expired(self) -> int:
        """Drop expired records. Returns the number removed."""

    async def is_healthy(self) -> bool: ...

    async def close(self) -> None: ...


class InMemoryPRStateCache:
    """Process-local cache; records are stored as JSON so callers never share
    mutable state with the cache."""

    def __init__(
        self,
        ttl_seconds: float = THREE_DAYS_IN_SECONDS,
        maxsize: int = 10000,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._entries: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer)

    async def get(self, key: str) -> Optional[PRTrackingRecord]:
        payload = self._entries.get(key)
        if payload is None:
            return None
        return PRTrackingRecord.from_json(payload)

    async def set(self, key: str, record: PRTrackingRecord) -> None:
        # Re-assignment restarts the TTL for an existing key
        self._entries[key] = record.to_json()

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def purge_expired(self) -> int:
        return len(self._entries.expire())

    async def is_healthy(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS pr_tracking (
    key TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    expires_at REAL NOT NULL
);
"""

CREATE_INDEX_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_pr_tracking_expires_at ON pr_tracking(expires_at);"
)


class SQLitePRStateCache:
    """Persistent cache on aiosqlite with per-operation timeouts."""

    def __init__(
        self,
        db_path: str,
        ttl_seconds: float = THREE_DAYS_IN_SECONDS,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.db_path = db_path
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self._clock = clock
        self._initialized = False

    async def initialize(self) -> None:
        """Create the table if not present."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(CREATE_TABLE_SQL)
            await db.execute(CREATE_INDEX_SQL)
            await db.commit()
        self._initialized = True
        logger.info("SQLitePRStateCache initialized at %s", self.db_path)

    async def _bounded(self, operation: str, key: str, coro: Awaitable[T]) -> T:
        if not self._initialized:
            await self.initialize()
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise CacheOperationError(
                operation, key, f"timed out after {self.timeout}s"
            ) from e
        except aiosqlite.Error as e:
            raise CacheOperationError(operation, key, str(e)) from e

    async def _get(self, key: str) -> Optional[PRTrackingRecord]:
        now = self._clock()
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "SELECT payload, expires_at FROM pr_tracking WHERE key = ?", (key,)
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            payload, expires_at = row
            if expires_at <= now:
                await db.execute(
                    "DELETE FROM pr_tracking WHERE key = ? AND expires_at <= ?",
                    (key, now),
                )
                await db.commit()
                logger.debug(f"Tracking record {key} expired")
                return None
        return PRTrackingRecord.from_json(payload)

    async def _set(self, key: str, record: PRTrackingRecord) -> None:
        expires_at = self._clock() + self.ttl_seconds
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO pr_tracking (key, payload, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE
                SET payload = excluded.payload, expires_at = excluded.expires_at
                """,
                (key, record.to_json(), expires_at),
            )
            await db.commit()

    async def _delete(self, key: str) -> bool:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM pr_tracking WHERE key = ?", (key,))
            await db.commit()
            return cursor.rowcount > 0

    async def _purge(self) -> int:
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                "DELETE FROM pr_tracking WHERE expires_at <= ?", (self._clock(),)
            )
            await db.commit()
            return cursor.rowcount

    async def get(self, key: str) -> Optional[PRTrackingRecord]:
        return await self._bounded("read", key, self._get(key))

    async def set(self, key: str, record: PRTrackingRecord) -> None:
        await self._bounded("write", key, self._set(key, record))

    async def delete(self, key: str) -> bool:
        return await self._bounded("delete", key, self._delete(key))

    async def purge_expired(self) -> int:
        removed = await self._bounded("purge", "*", self._purge())
        if removed:
            logger.info(f"Reaped {removed} expired PR tracking record(s)")
        return removed

    async def is_healthy(self) -> bool:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await asyncio.wait_for(db.execute("SELECT 1"), timeout=self.timeout)
            return True
        except (aiosqlite.Error, asyncio.TimeoutError) as e:
            logger.error(f"PR cache health check failed: {e}")
            return False

    async def close(self) -> None:
        return None


async def create_pr_cache(settings: Settings) -> PRStateCache:
    """Build the cache backend selected by PR_CACHE_BACKEND."""
    if settings.PR_CACHE_BACKEND == "memory":
        logger.info("Using in-memory PR tracking cache")
        return InMemoryPRStateCache(
            ttl_seconds=settings.PR_CACHE_TTL_SECONDS,
            maxsize=settings.PR_CACHE_MAX_ENTRIES,
        )

    cache = SQLitePRStateCache(
        settings.PR_CACHE_DB_PATH,
        ttl_seconds=settings.PR_CACHE_TTL_SECONDS,
        timeout=settings.PR_CACHE_TIMEOUT,
    )
    await cache.initialize()
    return cache
