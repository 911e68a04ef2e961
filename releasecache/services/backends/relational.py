"""Relational result cache (SQLAlchemy async, SQLite by default).

Tables:
  - cached_queries: one row per (source_id, query_hash), unique
  - cached_releases: one row per cached release, JSON payload in order

Writes are serialized behind one lock and each runs in a single transaction;
reads run unlocked and may briefly see the state before a concurrent write.
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import timedelta

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from releasecache.config import CacheSettings, CacheType
from releasecache.database import close_db, create_engine, create_session_factory, init_db
from releasecache.models import CachedQuery, CachedRelease
from releasecache.schemas import CachedResultView, CacheStatus, ReleaseInfo, SearchQuery, SourceInfo
from releasecache.services.backends.base import (
    RECENT_RESULTS_LIMIT,
    Clock,
    as_utc,
    expiry_cutoff,
    guarded,
    plan_eviction,
    select_recent,
    utcnow,
)
from releasecache.services.fingerprint import query_hash

logger = logging.getLogger(__name__)


def _parse_release(row_id: int, payload: str) -> ReleaseInfo | None:
    try:
        return ReleaseInfo.model_validate_json(payload)
    except ValidationError as e:
        logger.warning("Skipping unreadable cached release | row=%d | %s", row_id, str(e)[:200])
        return None


class RelationalCacheBackend:
    """Durable cache stored in a relational database."""

    kind = CacheType.SQLITE
    stateful = True

    def __init__(self, url: str, options: CacheSettings, clock: Clock = utcnow):
        self.url = url
        self._options = options
        self._clock = clock
        self._engine: AsyncEngine = create_engine(url)
        self._session_factory = create_session_factory(self._engine)
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        await init_db(self._engine)

    def ttl(self) -> timedelta:
        return timedelta(seconds=self._options.ttl_seconds)

    # ═══════════════ WRITES ═══════════════

    async def cache_results(
        self,
        source: SourceInfo,
        query: SearchQuery,
        results: Sequence[ReleaseInfo],
    ) -> None:
        if query.is_test:
            return

        key = query_hash(query)

        async def _write() -> None:
            async with self._write_lock:
                async with self._session_factory() as session, session.begin():
                    await self._delete_queries(session, await self._query_ids(
                        session,
                        CachedQuery.source_id == source.id,
                        CachedQuery.query_hash == key,
                    ))
                    entry = CachedQuery(
                        source_id=source.id,
                        source_name=source.name,
                        source_kind=source.kind,
                        query_hash=key,
                        created_at=as_utc(self._clock()),
                        result_count=len(results),
                    )
                    session.add(entry)
                    await session.flush()
                    session.add_all([
                        CachedRelease(
                            query_id=entry.id,
                            position=position,
                            publish_date=as_utc(release.publish_date) if release.publish_date else None,
                            payload=release.model_dump_json(),
                        )
                        for position, release in enumerate(results)
                    ])
                    await session.flush()
                    evicted = await self._evict_source(session, source.id)
            logger.debug(
                "Cache SET (sql) | source=%s | key=%s | results=%d | evicted=%d",
                source.id, key[:12], len(results), evicted,
            )

        await guarded(self.kind, "write", _write, None)

    async def _evict_source(self, session: AsyncSession, source_id: str) -> int:
        """Drop the oldest entries of a source until it fits the budget."""
        rows = (await session.execute(
            select(CachedQuery.id, CachedQuery.result_count)
            .where(CachedQuery.source_id == source_id)
            .order_by(CachedQuery.created_at.desc(), CachedQuery.id.desc())
        )).all()
        evicted = plan_eviction([(row.id, row.result_count) for row in rows], self._options.max_results_per_source)
        return await self._delete_queries(session, evicted)

    async def _prune_expired(self) -> None:
        cutoff = expiry_cutoff(self._clock(), self.ttl())
        if cutoff is None:
            return
        async with self._write_lock:
            async with self._session_factory() as session, session.begin():
                pruned = await self._delete_queries(
                    session, await self._query_ids(session, CachedQuery.created_at < as_utc(cutoff)),
                )
        if pruned:
            logger.debug("Cache prune by TTL | pruned_queries=%d", pruned)

    @staticmethod
    async def _query_ids(session: AsyncSession, *criteria) -> list[int]:
        return list((await session.execute(select(CachedQuery.id).where(*criteria))).scalars())

    @staticmethod
    async def _delete_queries(session: AsyncSession, ids: list[int]) -> int:
        """Delete entries and their releases."""
        if not ids:
            return 0
        await session.execute(delete(CachedRelease).where(CachedRelease.query_id.in_(ids)))
        await session.execute(delete(CachedQuery).where(CachedQuery.id.in_(ids)))
        return len(ids)

    async def clear_source(self, source_id: str) -> None:
        async def _clear() -> None:
            async with self._write_lock:
                async with self._session_factory() as session, session.begin():
                    await self._delete_queries(
                        session, await self._query_ids(session, CachedQuery.source_id == source_id),
                    )
            logger.info("Cache cleared | source=%s", source_id)

        await guarded(self.kind, "clear_source", _clear, None)

    async def clear_all(self) -> None:
        async def _clear() -> None:
            async with self._write_lock:
                async with self._session_factory() as session, session.begin():
                    await session.execute(delete(CachedRelease))
                    await session.execute(delete(CachedQuery))
            logger.info("Cache cleared | backend=sql")

        await guarded(self.kind, "clear_all", _clear, None)

    # ═══════════════ READS ═══════════════

    async def search(self, source_id: str, query: SearchQuery) -> tuple[list[ReleaseInfo], bool]:
        key = query_hash(query)

        async def _read() -> tuple[list[ReleaseInfo], bool]:
            await self._prune_expired()
            async with self._session_factory() as session:
                stmt = select(CachedQuery.id).where(
                    CachedQuery.source_id == source_id,
                    CachedQuery.query_hash == key,
                )
                cutoff = expiry_cutoff(self._clock(), self.ttl())
                if cutoff is not None:
                    stmt = stmt.where(CachedQuery.created_at >= as_utc(cutoff))
                entry_id = (await session.execute(stmt)).scalar_one_or_none()
                if entry_id is None:
                    return [], False

                rows = (await session.execute(
                    select(CachedRelease.id, CachedRelease.payload)
                    .where(CachedRelease.query_id == entry_id)
                    .order_by(CachedRelease.position)
                )).all()

            results = [r for r in (_parse_release(row.id, row.payload) for row in rows) if r is not None]
            logger.debug("Cache HIT (sql) | source=%s | key=%s | results=%d", source_id, key[:12], len(results))
            return results, True

        return await guarded(self.kind, "search", _read, ([], False))

    async def get_recent_results(self, limit: int = RECENT_RESULTS_LIMIT) -> list[CachedResultView]:
        async def _read() -> list[CachedResultView]:
            await self._prune_expired()
            async with self._session_factory() as session:
                stmt = (
                    select(
                        CachedRelease.id,
                        CachedRelease.payload,
                        CachedQuery.source_id,
                        CachedQuery.source_name,
                        CachedQuery.source_kind,
                        CachedQuery.created_at,
                    )
                    .join(CachedQuery, CachedRelease.query_id == CachedQuery.id)
                    .order_by(CachedQuery.created_at.desc(), CachedQuery.id.desc(), CachedRelease.position)
                )
                cutoff = expiry_cutoff(self._clock(), self.ttl())
                if cutoff is not None:
                    stmt = stmt.where(CachedQuery.created_at >= as_utc(cutoff))
                rows = (await session.execute(stmt)).all()

            views = []
            for row in rows:
                release = _parse_release(row.id, row.payload)
                if release is None:
                    continue
                views.append(CachedResultView(
                    release=release,
                    source_id=row.source_id,
                    source_name=row.source_name,
                    source_kind=row.source_kind,
                    first_seen=as_utc(row.created_at),
                ))
            return select_recent(views, limit)

        return await guarded(self.kind, "recent_results", _read, [])

    async def get_status(self) -> CacheStatus:
        async def _read() -> CacheStatus:
            async with self._session_factory() as session:
                entries, sources = (await session.execute(
                    select(func.count(CachedQuery.id), func.count(CachedQuery.source_id.distinct()))
                )).one()
                results = (await session.execute(select(func.count(CachedRelease.id)))).scalar_one()
            return CacheStatus(backend=self.kind.value, entries=entries, results=results, sources=sources)

        return await guarded(self.kind, "status", _read, CacheStatus(backend=self.kind.value))

    async def close(self) -> None:
        await close_db(self._engine)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    def __repr__(self) -> str:
        return f"RelationalCacheBackend(url={self._engine.url.render_as_string(hide_password=True)!r})"
