"""MongoDB result cache.

One document per (source_id, query_hash), written with an atomic
single-document upsert. Writes from one backend instance are serialized;
each write stamps a fresh ObjectId in `write_seq` so entries written within
the same millisecond still order by write. Pruning during reads is
scan-then-delete and best-effort: it can race with writers, which at worst
leaves a stale entry around until the next prune.

pymongo is synchronous; calls run in worker threads via asyncio.to_thread.
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from bson import ObjectId
from pydantic import ValidationError
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection

from releasecache.config import CacheSettings, CacheType
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

COLLECTION_NAME = "cached_queries"


def _bson_time(value: datetime) -> datetime:
    """MongoDB keeps naive UTC datetimes with millisecond precision."""
    return as_utc(value).replace(tzinfo=None)


def _parse_release(doc_id: Any, data: dict[str, Any]) -> ReleaseInfo | None:
    try:
        return ReleaseInfo.model_validate(data)
    except ValidationError as e:
        logger.warning("Skipping unreadable cached release | doc=%s | %s", doc_id, str(e)[:200])
        return None


class DocumentCacheBackend:
    """Durable cache stored in a MongoDB collection."""

    kind = CacheType.MONGODB
    stateful = True

    def __init__(
        self,
        connection_string: str,
        options: CacheSettings,
        clock: Clock = utcnow,
        client: MongoClient | None = None,
    ):
        self.uri = connection_string if "://" in connection_string else f"mongodb://{connection_string}"
        self._options = options
        self._clock = clock
        if client is None:
            client = MongoClient(
                self.uri,
                serverSelectionTimeoutMS=options.mongo_timeout_ms,
                connect=False,
            )
            database = client.get_default_database(default=options.mongo_database)
        else:
            database = client[options.mongo_database]
        self._client = client
        self._write_lock = asyncio.Lock()
        self._collection: Collection = database[COLLECTION_NAME]

    async def initialize(self) -> None:
        await asyncio.to_thread(self._create_indexes)
        logger.info("MongoDB cache ready | collection=%s", COLLECTION_NAME)

    def _create_indexes(self) -> None:
        self._collection.create_index(
            [("source_id", ASCENDING), ("query_hash", ASCENDING)],
            unique=True,
            name="source_query_unique",
        )
        self._collection.create_index([("created_at", ASCENDING)], name="created_at")

    def ttl(self) -> timedelta:
        return timedelta(seconds=self._options.ttl_seconds)

    def _cutoff(self) -> datetime | None:
        cutoff = expiry_cutoff(self._clock(), self.ttl())
        return _bson_time(cutoff) if cutoff is not None else None

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
        document = {
            "source_id": source.id,
            "source_name": source.name,
            "source_kind": source.kind,
            "query_hash": key,
            "created_at": _bson_time(self._clock()),
            "write_seq": ObjectId(),
            "result_count": len(results),
            "results": [
                {
                    "published_at": _bson_time(r.publish_date) if r.publish_date else None,
                    "release": r.model_dump(mode="json"),
                }
                for r in results
            ],
        }

        def _write() -> int:
            self._collection.update_one(
                {"source_id": source.id, "query_hash": key},
                {"$set": document},
                upsert=True,
            )
            return self._evict_source(source.id)

        async def _run() -> None:
            async with self._write_lock:
                evicted = await asyncio.to_thread(_write)
            logger.debug(
                "Cache SET (mongodb) | source=%s | key=%s | results=%d | evicted=%d",
                source.id, key[:12], len(results), evicted,
            )

        await guarded(self.kind, "write", _run, None)

    def _evict_source(self, source_id: str) -> int:
        entries = self._collection.find(
            {"source_id": source_id},
            {"_id": 1, "result_count": 1},
        ).sort([("created_at", DESCENDING), ("write_seq", DESCENDING)])
        evicted = plan_eviction(
            [(doc["_id"], doc.get("result_count", 0)) for doc in entries],
            self._options.max_results_per_source,
        )
        if evicted:
            self._collection.delete_many({"_id": {"$in": evicted}})
        return len(evicted)

    def _prune_expired(self) -> None:
        cutoff = self._cutoff()
        if cutoff is None:
            return
        expired = [doc["_id"] for doc in self._collection.find({"created_at": {"$lt": cutoff}}, {"_id": 1})]
        if expired:
            result = self._collection.delete_many({"_id": {"$in": expired}})
            logger.debug("Cache prune by TTL | pruned_queries=%d", result.deleted_count)

    async def clear_source(self, source_id: str) -> None:
        async def _clear() -> None:
            async with self._write_lock:
                result = await asyncio.to_thread(self._collection.delete_many, {"source_id": source_id})
            logger.info("Cache cleared | source=%s | queries=%d", source_id, result.deleted_count)

        await guarded(self.kind, "clear_source", _clear, None)

    async def clear_all(self) -> None:
        async def _clear() -> None:
            async with self._write_lock:
                result = await asyncio.to_thread(self._collection.delete_many, {})
            logger.info("Cache cleared | backend=mongodb | queries=%d", result.deleted_count)

        await guarded(self.kind, "clear_all", _clear, None)

    # ═══════════════ READS ═══════════════

    async def search(self, source_id: str, query: SearchQuery) -> tuple[list[ReleaseInfo], bool]:
        key = query_hash(query)

        def _read() -> dict[str, Any] | None:
            self._prune_expired()
            criteria: dict[str, Any] = {"source_id": source_id, "query_hash": key}
            cutoff = self._cutoff()
            if cutoff is not None:
                criteria["created_at"] = {"$gte": cutoff}
            return self._collection.find_one(criteria)

        async def _run() -> tuple[list[ReleaseInfo], bool]:
            document = await asyncio.to_thread(_read)
            if document is None:
                return [], False
            parsed = (_parse_release(document["_id"], item.get("release", {})) for item in document.get("results", []))
            results = [r for r in parsed if r is not None]
            logger.debug("Cache HIT (mongodb) | source=%s | key=%s | results=%d", source_id, key[:12], len(results))
            return results, True

        return await guarded(self.kind, "search", _run, ([], False))

    async def get_recent_results(self, limit: int = RECENT_RESULTS_LIMIT) -> list[CachedResultView]:
        def _read() -> list[dict[str, Any]]:
            self._prune_expired()
            pipeline: list[dict[str, Any]] = []
            cutoff = self._cutoff()
            if cutoff is not None:
                pipeline.append({"$match": {"created_at": {"$gte": cutoff}}})
            pipeline += [
                {"$sort": {"created_at": DESCENDING, "write_seq": DESCENDING}},
                {"$unwind": "$results"},
            ]
            return list(self._collection.aggregate(pipeline))

        async def _run() -> list[CachedResultView]:
            views = []
            for doc in await asyncio.to_thread(_read):
                release = _parse_release(doc["_id"], doc["results"].get("release", {}))
                if release is None:
                    continue
                views.append(CachedResultView(
                    release=release,
                    source_id=doc["source_id"],
                    source_name=doc.get("source_name", ""),
                    source_kind=doc.get("source_kind", ""),
                    first_seen=as_utc(doc["created_at"]),
                ))
            return select_recent(views, limit)

        return await guarded(self.kind, "recent_results", _run, [])

    async def get_status(self) -> CacheStatus:
        def _read() -> CacheStatus:
            totals = list(self._collection.aggregate([
                {"$group": {"_id": None, "entries": {"$sum": 1}, "results": {"$sum": "$result_count"}}},
            ]))
            sources = self._collection.distinct("source_id")
            entries = totals[0]["entries"] if totals else 0
            results = totals[0]["results"] if totals else 0
            return CacheStatus(backend=self.kind.value, entries=entries, results=results, sources=len(sources))

        async def _run() -> CacheStatus:
            return await asyncio.to_thread(_read)

        return await guarded(self.kind, "status", _run, CacheStatus(backend=self.kind.value))

    async def close(self) -> None:
        await asyncio.to_thread(self._client.close)
