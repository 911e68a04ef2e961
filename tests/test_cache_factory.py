"""Tests for building backends from a type and a connection string."""

import pytest

from releasecache.config import CacheType
from releasecache.services.backends import (
    DisabledCacheBackend,
    DocumentCacheBackend,
    MemoryCacheBackend,
    RelationalCacheBackend,
)
from releasecache.services.cache_factory import CacheConfigurationError, create_backend


class TestCreateBackend:
    def test_disabled(self, cache_options):
        assert isinstance(create_backend(CacheType.DISABLED, "", cache_options), DisabledCacheBackend)

    def test_memory_ignores_connection_string(self, cache_options):
        backend = create_backend("memory", "", cache_options)
        assert isinstance(backend, MemoryCacheBackend)
        assert backend.ttl().total_seconds() == cache_options.ttl_seconds

    @pytest.mark.asyncio
    async def test_sqlite_relative_path(self, tmp_path, cache_options):
        backend = create_backend(CacheType.SQLITE, "  sub/cache.db ", cache_options)
        try:
            assert isinstance(backend, RelationalCacheBackend)
            assert backend.url == f"sqlite+aiosqlite:///{(tmp_path / 'sub' / 'cache.db').resolve()}"
            await backend.initialize()
            assert (tmp_path / "sub" / "cache.db").exists()
        finally:
            await backend.close()

    @pytest.mark.asyncio
    async def test_mongodb_scheme_added(self, cache_options):
        backend = create_backend(CacheType.MONGODB, "localhost:27017", cache_options)
        assert isinstance(backend, DocumentCacheBackend)
        assert backend.uri == "mongodb://localhost:27017"
        await backend.close()


class TestConfigurationErrors:
    def test_unknown_type(self, cache_options):
        with pytest.raises(CacheConfigurationError, match="Unknown cache type"):
            create_backend("redis", "localhost", cache_options)

    @pytest.mark.parametrize("connection_string", ["", "   "])
    @pytest.mark.parametrize("cache_type", [CacheType.SQLITE, CacheType.MONGODB])
    def test_empty_connection_string(self, cache_type, connection_string, cache_options):
        with pytest.raises(CacheConfigurationError, match="empty"):
            create_backend(cache_type, connection_string, cache_options)

    def test_sync_sqlite_driver_rejected(self, tmp_path, cache_options):
        with pytest.raises(CacheConfigurationError):
            create_backend(CacheType.SQLITE, f"sqlite:///{tmp_path / 'sync.db'}", cache_options)

    def test_unknown_sql_dialect_rejected(self, cache_options):
        with pytest.raises(CacheConfigurationError):
            create_backend(CacheType.SQLITE, "nosuchdb://host/cache", cache_options)

    def test_bad_mongodb_uri(self, cache_options):
        with pytest.raises(CacheConfigurationError):
            create_backend(CacheType.MONGODB, "http://db.example.org", cache_options)

    def test_is_value_error(self):
        assert issubclass(CacheConfigurationError, ValueError)
