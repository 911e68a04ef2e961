"""Cache manager — the handle callers hold for result caching.

Responsibilities:
  - Own the active backend and forward every cache operation to it
  - Swap the backend at runtime (switching type discards cached data)
  - Read-through helper for the per-source query loop

Construct one manager at startup and pass it to whoever needs caching.
"""

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import timedelta

from releasecache.config import CacheSettings, CacheType
from releasecache.schemas import CachedResultView, CacheStatus, ReleaseInfo, SearchQuery, SourceInfo
from releasecache.services.backends import CacheBackend
from releasecache.services.backends.base import RECENT_RESULTS_LIMIT, Clock, utcnow
from releasecache.services.cache_factory import CacheConfigurationError, create_backend

logger = logging.getLogger(__name__)


@dataclass
class FetchOutcome:
    releases: list[ReleaseInfo] = field(default_factory=list)
    from_cache: bool = False


class CacheManager:
    """Routes cache operations to the currently configured backend."""

    def __init__(self, options: CacheSettings, clock: Clock = utcnow):
        self._options = options
        self._clock = clock
        self._backend: CacheBackend = create_backend(
            options.cache_type, options.connection_string, options, clock=clock,
        )
        self._switch_lock = asyncio.Lock()
        # in-flight writes per backend instance
        self._writes: Counter[int] = Counter()
        self._writes_idle = asyncio.Condition()

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    @property
    def cache_type(self) -> CacheType:
        return self._options.cache_type

    @property
    def connection_string(self) -> str:
        return self._options.connection_string

    async def initialize(self) -> None:
        await self._backend.initialize()

    # ═══════════════ FORWARDED OPERATIONS ═══════════════

    async def cache_results(
        self,
        source: SourceInfo,
        query: SearchQuery,
        results: Sequence[ReleaseInfo],
    ) -> None:
        await self._store(self._backend, source, query, results)

    async def search(self, source_id: str, query: SearchQuery) -> tuple[list[ReleaseInfo], bool]:
        return await self._backend.search(source_id, query)

    async def get_recent_results(self, limit: int = RECENT_RESULTS_LIMIT) -> list[CachedResultView]:
        return await self._backend.get_recent_results(limit)

    async def clear_source(self, source_id: str) -> None:
        await self._backend.clear_source(source_id)

    async def clear_all(self) -> None:
        await self._backend.clear_all()

    def ttl(self) -> timedelta:
        return self._backend.ttl()

    async def get_status(self) -> CacheStatus:
        return await self._backend.get_status()

    async def close(self) -> None:
        await self._backend.close()

    async def _store(
        self,
        backend: CacheBackend,
        source: SourceInfo,
        query: SearchQuery,
        results: Sequence[ReleaseInfo],
    ) -> None:
        """Write through ``backend`` unless it has been replaced meanwhile."""
        if backend is not self._backend:
            logger.debug("Cache store skipped, backend replaced | source=%s", source.id)
            return
        self._writes[id(backend)] += 1
        try:
            await backend.cache_results(source, query, results)
        finally:
            async with self._writes_idle:
                self._writes[id(backend)] -= 1
                if not self._writes[id(backend)]:
                    del self._writes[id(backend)]
                self._writes_idle.notify_all()

    async def _drain_writes(self, backend: CacheBackend) -> None:
        async with self._writes_idle:
            await self._writes_idle.wait_for(lambda: not self._writes[id(backend)])

    # ═══════════════ READ-THROUGH ═══════════════

    async def search_or_fetch(
        self,
        source: SourceInfo,
        query: SearchQuery,
        fetch: Callable[[], Awaitable[Sequence[ReleaseInfo]]],
    ) -> FetchOutcome:
        """Serve a source query from cache, or run ``fetch`` and cache its results.

        Cache problems never stop the real fetch; errors raised by ``fetch``
        itself reach the caller unchanged.
        """
        backend = self._backend
        try:
            cached, found = await backend.search(source.id, query)
        except Exception as e:
            logger.error("Cache lookup failed | source=%s | %s", source.id, str(e)[:200])
            cached, found = [], False

        if found:
            logger.info("Cache hit | source=%s | results=%d", source.id, len(cached))
            return FetchOutcome(releases=cached, from_cache=True)

        releases = list(await fetch())

        try:
            await self._store(backend, source, query, releases)
        except Exception as e:
            logger.error("Cache store failed | source=%s | %s", source.id, str(e)[:200])

        return FetchOutcome(releases=releases, from_cache=False)

    # ═══════════════ RECONFIGURATION ═══════════════

    async def switch_backend(self, cache_type: CacheType | str, connection_string: str) -> CacheBackend:
        """Replace the active backend.

        The new backend is built and initialized before anything changes, so a
        bad configuration raises here and leaves the current backend active.
        Switching away from a stateful backend to another type clears its data
        once the writes already running against it have finished; writes that
        reach the replaced backend later are dropped.
        """
        async with self._switch_lock:
            new_options = replace(self._options, connection_string=connection_string)
            try:
                new_type = CacheType(cache_type)
            except ValueError:
                raise CacheConfigurationError(f"Unknown cache type: {cache_type!r}") from None

            if new_type == self._options.cache_type and connection_string == self._options.connection_string:
                logger.info("Cache backend unchanged | type=%s", self._options.cache_type.value)
                return self._backend

            new_backend = create_backend(new_type, connection_string, new_options, clock=self._clock)
            try:
                await new_backend.initialize()
            except Exception:
                await new_backend.close()
                raise

            old_backend = self._backend
            self._backend = new_backend
            self._options = replace(new_options, cache_type=new_backend.kind)
            logger.info(
                "Cache backend switched | %s -> %s",
                old_backend.kind.value, new_backend.kind.value,
            )

            if old_backend.stateful and old_backend.kind != new_backend.kind:
                await self._drain_writes(old_backend)
                await old_backend.clear_all()

        await old_backend.close()
        return new_backend
