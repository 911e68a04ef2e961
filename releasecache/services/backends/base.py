"""Backend contract and the helpers every cache backend shares.

Implementations:
  - MemoryCacheBackend: per-source FIFO caches in process memory
  - RelationalCacheBackend: SQLAlchemy async (SQLite by default)
  - DocumentCacheBackend: MongoDB collection, one document per entry
  - DisabledCacheBackend: caching turned off
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Protocol, TypeVar

from releasecache.config import CacheType
from releasecache.schemas import CachedResultView, CacheStatus, ReleaseInfo, SearchQuery, SourceInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]

RECENT_RESULTS_LIMIT = 3000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Stores hand back naive datetimes in UTC; make them aware again."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CacheBackend(Protocol):
    """Common contract of all result-cache backends."""

    kind: CacheType
    stateful: bool

    async def initialize(self) -> None:
        """Create storage structures. Safe to call repeatedly."""
        ...

    async def cache_results(
        self,
        source: SourceInfo,
        query: SearchQuery,
        results: Sequence[ReleaseInfo],
    ) -> None:
        """Upsert the entry for (source, query) and enforce the per-source budget."""
        ...

    async def search(self, source_id: str, query: SearchQuery) -> tuple[list[ReleaseInfo], bool]:
        """Return (results, found). An empty hit is ([], True)."""
        ...

    async def get_recent_results(self, limit: int = RECENT_RESULTS_LIMIT) -> list[CachedResultView]:
        """Live cached releases across all sources, one per guid, newest publish date first."""
        ...

    async def clear_source(self, source_id: str) -> None:
        ...

    async def clear_all(self) -> None:
        ...

    def ttl(self) -> timedelta:
        ...

    async def get_status(self) -> CacheStatus:
        ...

    async def close(self) -> None:
        ...


async def guarded(kind: CacheType, action: str, operation: Callable[[], Awaitable[T]], fallback: T) -> T:
    """Run a storage operation; on failure log it and return the fallback.

    Caching is an optimization only, so storage errors degrade to a miss or
    a no-op instead of reaching the caller's search flow.
    """
    try:
        return await operation()
    except Exception as e:
        logger.error("%s cache %s failed | %s", kind.value, action, str(e)[:200])
        return fallback


def expiry_cutoff(now: datetime, ttl: timedelta) -> datetime | None:
    """Entries created before the cutoff are expired. None when TTL is off."""
    if ttl <= timedelta(0):
        return None
    return now - ttl


def plan_eviction(entries: Sequence[tuple[T, int]], max_results: int) -> list[T]:
    """Pick whole entries to drop so the result total fits the budget.

    ``entries`` are (key, result_count) pairs ordered newest first. The
    oldest entries are dropped until the running total is within budget.
    """
    remaining = list(entries)
    total = sum(count for _, count in remaining)
    evicted: list[T] = []
    while total > max_results and remaining:
        key, count = remaining.pop()
        total -= count
        evicted.append(key)
    return evicted


def recent_sort_key(view: CachedResultView) -> tuple[bool, datetime]:
    """Sort key for newest publish date first; undated releases go last."""
    published = view.release.publish_date
    if published is None:
        return (False, datetime.min.replace(tzinfo=timezone.utc))
    return (True, as_utc(published))


def select_recent(views: Sequence[CachedResultView], limit: int) -> list[CachedResultView]:
    """One view per release guid, newest publish date first, at most ``limit``.

    A release cached under several entries is listed once, from the entry
    written last. Releases without a guid are never merged.
    """
    by_entry_age = sorted(views, key=lambda view: as_utc(view.first_seen), reverse=True)
    seen: set[str] = set()
    unique: list[CachedResultView] = []
    for view in by_entry_age:
        guid = view.release.guid
        if guid is not None:
            if guid in seen:
                continue
            seen.add(guid)
        unique.append(view)
    unique.sort(key=recent_sort_key, reverse=True)
    return unique[:limit]
