"""In-process result cache.

One cachetools.FIFOCache per source, sized by the number of cached results,
so the per-source budget is enforced by FIFO eviction of whole entries.
Everything is lost on restart.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from cachetools import FIFOCache

from releasecache.config import CacheSettings, CacheType
from releasecache.schemas import CachedResultView, CacheStatus, ReleaseInfo, SearchQuery, SourceInfo
from releasecache.services.backends.base import (
    RECENT_RESULTS_LIMIT,
    Clock,
    expiry_cutoff,
    select_recent,
    utcnow,
)
from releasecache.services.fingerprint import query_hash

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    source: SourceInfo
    query_hash: str
    created_at: datetime
    results: list[ReleaseInfo]


def _entry_size(entry: _Entry) -> int:
    return len(entry.results)


class SourceCache(FIFOCache):
    """Entries of one source; size is the total number of cached results."""

    def __init__(self, source_id: str, maxsize: int):
        super().__init__(maxsize=maxsize, getsizeof=_entry_size)
        self.source_id = source_id

    def popitem(self):
        key, entry = super().popitem()
        logger.debug(
            "Cache evict | source=%s | key=%s | results=%d",
            self.source_id, key[:12], len(entry.results),
        )
        return key, entry


class MemoryCacheBackend:
    """Process-local cache guarded by a single lock."""

    kind = CacheType.MEMORY
    stateful = True

    def __init__(self, options: CacheSettings, clock: Clock = utcnow):
        self._options = options
        self._clock = clock
        self._sources: dict[str, SourceCache] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        logger.info(
            "Memory cache ready | ttl=%ds | max_per_source=%d",
            self._options.ttl_seconds, self._options.max_results_per_source,
        )

    def ttl(self) -> timedelta:
        return timedelta(seconds=self._options.ttl_seconds)

    async def cache_results(
        self,
        source: SourceInfo,
        query: SearchQuery,
        results: Sequence[ReleaseInfo],
    ) -> None:
        if query.is_test:
            return

        key = query_hash(query)
        entry = _Entry(
            source=source.model_copy(),
            query_hash=key,
            created_at=self._clock(),
            results=[r.model_copy(deep=True) for r in results],
        )

        async with self._lock:
            self._prune_expired()
            cache = self._sources.get(source.id)
            if cache is None:
                cache = SourceCache(source.id, self._options.max_results_per_source)
                self._sources[source.id] = cache

            # upsert: drop the old entry so the new one is queued as newest
            cache.pop(key, None)
            if len(entry.results) > cache.maxsize:
                logger.debug(
                    "Cache evict all | source=%s | results=%d exceed max=%d",
                    source.id, len(entry.results), cache.maxsize,
                )
                cache.clear()
                return
            cache[key] = entry

        logger.debug("Cache SET (memory) | source=%s | key=%s | results=%d", source.id, key[:12], len(results))

    async def search(self, source_id: str, query: SearchQuery) -> tuple[list[ReleaseInfo], bool]:
        key = query_hash(query)
        async with self._lock:
            self._prune_expired()
            cache = self._sources.get(source_id)
            entry = cache.get(key) if cache is not None else None
            if entry is None:
                return [], False
            results = [r.model_copy(deep=True) for r in entry.results]

        logger.debug("Cache HIT (memory) | source=%s | key=%s | results=%d", source_id, key[:12], len(results))
        return results, True

    async def get_recent_results(self, limit: int = RECENT_RESULTS_LIMIT) -> list[CachedResultView]:
        async with self._lock:
            self._prune_expired()
            # newest entry first so it wins guid ties on equal timestamps
            views = [
                CachedResultView(
                    release=release.model_copy(deep=True),
                    source_id=entry.source.id,
                    source_name=entry.source.name,
                    source_kind=entry.source.kind,
                    first_seen=entry.created_at,
                )
                for cache in self._sources.values()
                for entry in reversed(list(cache.values()))
                for release in entry.results
            ]
        return select_recent(views, limit)

    async def clear_source(self, source_id: str) -> None:
        async with self._lock:
            self._sources.pop(source_id, None)
        logger.info("Cache cleared | source=%s", source_id)

    async def clear_all(self) -> None:
        async with self._lock:
            self._sources.clear()
        logger.info("Cache cleared | backend=memory")

    async def get_status(self) -> CacheStatus:
        async with self._lock:
            return CacheStatus(
                backend=self.kind.value,
                entries=sum(len(cache) for cache in self._sources.values()),
                results=sum(cache.currsize for cache in self._sources.values()),
                sources=sum(1 for cache in self._sources.values() if len(cache)),
            )

    async def close(self) -> None:
        pass

    def _prune_expired(self) -> None:
        """Drop expired entries. Caller holds the lock."""
        cutoff = expiry_cutoff(self._clock(), self.ttl())
        if cutoff is None:
            return
        pruned = 0
        for source_id in list(self._sources):
            cache = self._sources[source_id]
            expired = [k for k, entry in cache.items() if entry.created_at < cutoff]
            for k in expired:
                del cache[k]
            pruned += len(expired)
            if not len(cache):
                del self._sources[source_id]
        if pruned:
            logger.debug("Cache prune by TTL | pruned=%d", pruned)
