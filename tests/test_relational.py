"""Tests for the SQLAlchemy-backed cache: durability, bad rows, storage failures."""

from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import select, update

from releasecache.database import resolve_database_url
from releasecache.models import CachedQuery, CachedRelease
from releasecache.services.backends import RelationalCacheBackend


@pytest.fixture
async def sql_backend(make_backend):
    return await make_backend("sqlite")


class TestResolveDatabaseUrl:
    def test_relative_path_under_data_folder(self, tmp_path):
        url = resolve_database_url("cache.db", str(tmp_path))
        assert url == f"sqlite+aiosqlite:///{(tmp_path / 'cache.db').resolve()}"

    def test_absolute_path_kept(self, tmp_path):
        target = tmp_path / "elsewhere" / "cache.db"
        url = resolve_database_url(str(target), "/ignored")
        assert url == f"sqlite+aiosqlite:///{target.resolve()}"

    def test_full_url_passed_through(self):
        url = "postgresql+asyncpg://user:pw@db:5432/cache"
        assert resolve_database_url(url, "/data") == url


class TestDurability:
    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path, clock, cache_options, demo_source, ubuntu_query, full_release):
        url = resolve_database_url("nested/cache.db", str(tmp_path))
        first = RelationalCacheBackend(url, cache_options, clock=clock)
        await first.initialize()
        await first.cache_results(demo_source, ubuntu_query, [full_release])
        await first.close()

        assert Path(tmp_path / "nested" / "cache.db").exists()

        second = RelationalCacheBackend(url, cache_options, clock=clock)
        await second.initialize()
        results, found = await second.search(demo_source.id, ubuntu_query)
        await second.close()

        assert found is True
        assert results == [full_release]

    @pytest.mark.asyncio
    async def test_one_row_per_key(self, sql_backend, demo_source, ubuntu_query, make_releases):
        for _ in range(3):
            await sql_backend.cache_results(demo_source, ubuntu_query, make_releases(2))

        async with sql_backend.engine.connect() as conn:
            queries = (await conn.execute(select(CachedQuery.id))).all()
            releases = (await conn.execute(select(CachedRelease.id))).all()
        assert len(queries) == 1
        assert len(releases) == 2

    @pytest.mark.asyncio
    async def test_timestamps_stored_in_utc(self, sql_backend, clock, demo_source, ubuntu_query, full_release):
        await sql_backend.cache_results(demo_source, ubuntu_query, [full_release])

        async with sql_backend.engine.connect() as conn:
            published = (await conn.execute(select(CachedRelease.publish_date))).scalar_one()
            created = (await conn.execute(select(CachedQuery.created_at))).scalar_one()
        assert published.replace(tzinfo=None) == datetime(2022, 4, 18, 7, 30, 15)
        assert created.replace(tzinfo=None) == clock().replace(tzinfo=None)


class TestDegradedStorage:
    @pytest.mark.asyncio
    async def test_unreadable_row_is_skipped(self, sql_backend, demo_source, ubuntu_query, make_releases):
        await sql_backend.cache_results(demo_source, ubuntu_query, make_releases(3))
        async with sql_backend.engine.begin() as conn:
            await conn.execute(
                update(CachedRelease).where(CachedRelease.position == 1).values(payload="{not json")
            )

        results, found = await sql_backend.search(demo_source.id, ubuntu_query)

        assert found is True
        assert [r.title for r in results] == ["release-0", "release-2"]
        assert len(await sql_backend.get_recent_results()) == 2

    @pytest.mark.asyncio
    async def test_storage_errors_become_misses(self, sql_backend, demo_source, ubuntu_query, make_releases):
        def broken_session():
            raise OSError("disk unavailable")

        sql_backend._session_factory = broken_session

        await sql_backend.cache_results(demo_source, ubuntu_query, make_releases(1))
        assert await sql_backend.search(demo_source.id, ubuntu_query) == ([], False)
        assert await sql_backend.get_recent_results() == []
        await sql_backend.clear_source(demo_source.id)
        await sql_backend.clear_all()
        status = await sql_backend.get_status()
        assert status.entries == 0

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_entry(self, sql_backend, demo_source, ubuntu_query, make_releases):
        await sql_backend.cache_results(demo_source, ubuntu_query, make_releases(2, prefix="kept"))

        class Unserializable:
            title = "bad"
            publish_date = None

            def model_dump_json(self):
                raise ValueError("cannot serialize")

        await sql_backend.cache_results(demo_source, ubuntu_query, [Unserializable()])

        results, found = await sql_backend.search(demo_source.id, ubuntu_query)
        assert found is True
        assert [r.title for r in results] == ["kept-0", "kept-1"]

