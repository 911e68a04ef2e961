"""Backend used when result caching is turned off: every lookup misses."""

from collections.abc import Sequence
from datetime import timedelta

from releasecache.config import CacheType
from releasecache.schemas import CachedResultView, CacheStatus, ReleaseInfo, SearchQuery, SourceInfo
from releasecache.services.backends.base import RECENT_RESULTS_LIMIT


class DisabledCacheBackend:
    kind = CacheType.DISABLED
    stateful = False

    async def initialize(self) -> None:
        pass

    async def cache_results(
        self,
        source: SourceInfo,
        query: SearchQuery,
        results: Sequence[ReleaseInfo],
    ) -> None:
        pass

    async def search(self, source_id: str, query: SearchQuery) -> tuple[list[ReleaseInfo], bool]:
        return [], False

    async def get_recent_results(self, limit: int = RECENT_RESULTS_LIMIT) -> list[CachedResultView]:
        return []

    async def clear_source(self, source_id: str) -> None:
        pass

    async def clear_all(self) -> None:
        pass

    def ttl(self) -> timedelta:
        return timedelta(0)

    async def get_status(self) -> CacheStatus:
        return CacheStatus(backend=self.kind.value)

    async def close(self) -> None:
        pass
