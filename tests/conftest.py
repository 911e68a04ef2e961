"""Shared test fixtures and configuration."""

from datetime import datetime, timedelta, timezone

import mongomock
import pytest

from releasecache.config import CacheSettings
from releasecache.schemas import ReleaseInfo, SearchQuery, SourceInfo
from releasecache.services.backends import (
    DisabledCacheBackend,
    DocumentCacheBackend,
    MemoryCacheBackend,
    RelationalCacheBackend,
)

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def demo_source():
    return SourceInfo(id="demo", name="Demo Tracker", kind="public")


@pytest.fixture
def other_source():
    return SourceInfo(id="other", name="Other Tracker", kind="private")


@pytest.fixture
def ubuntu_query():
    return SearchQuery(search_term="ubuntu", categories=[8000])


@pytest.fixture
def full_release():
    """A release with every field populated."""
    return ReleaseInfo(
        title="ubuntu-19.04-desktop-amd64.iso",
        guid="http://itorrents.org/torrent/d540fc48eb12f2833163eed6421d449dd8f1ce1f.torrent",
        link="http://itorrents.org/torrent/d540fc48eb12f2833163eed6421d449dd8f1ce1f.torrent",
        details="https://www.testdefinition1.cc/torrent/d540fc48eb12f2833163eed6421d449dd8f1ce1f",
        publish_date=datetime(2022, 4, 18, 9, 30, 15, tzinfo=timezone(timedelta(hours=2))),
        category=[8000, 100001],
        size=2097152000,
        files=3,
        grabs=117,
        description="Ubuntu desktop image",
        rage_id=11,
        tvdb_id=12,
        imdb=133093,
        tmdb=603,
        tvmaze_id=14,
        trakt_id=15,
        douban_id=16,
        genres=["linux", "os"],
        languages=["en", "ka"],
        subs=["en"],
        year=2019,
        author="Canonical",
        book_title="Ubuntu Manual",
        publisher="Canonical Ltd",
        artist="Various",
        album="Disco",
        label="Label",
        track="01",
        seeders=12,
        peers=13,
        poster="https://img.example.org/poster.jpg",
        info_hash="d540fc48eb12f2833163eed6421d449dd8f1ce1f",
        magnet_uri="magnet:?xt=urn:btih:d540fc48eb12f2833163eed6421d449dd8f1ce1f&dn=ubuntu-19.04-desktop-amd64.iso",
        minimum_ratio=0.75,
        minimum_seed_time=172800,
        download_volume_factor=1.0,
        upload_volume_factor=2.0,
    )


def build_releases(count: int, prefix: str = "release", start: datetime = T0) -> list[ReleaseInfo]:
    return [
        ReleaseInfo(
            title=f"{prefix}-{i}",
            guid=f"https://tracker.example.org/{prefix}/{i}",
            publish_date=start - timedelta(hours=i),
            seeders=i,
        )
        for i in range(count)
    ]


@pytest.fixture
def make_releases():
    return build_releases


@pytest.fixture
def cache_options(tmp_path):
    return CacheSettings(
        connection_string="cache.db",
        ttl_seconds=600,
        max_results_per_source=50,
        data_folder=str(tmp_path),
    )


BACKEND_KINDS = ["memory", "sqlite", "mongodb"]


@pytest.fixture
async def make_backend(tmp_path, clock, cache_options):
    """Build and initialize a backend of the given kind; closed after the test."""
    created = []

    async def _make(kind: str, **overrides):
        options = CacheSettings(**{**cache_options.__dict__, **overrides})
        if kind == "memory":
            backend = MemoryCacheBackend(options, clock=clock)
        elif kind == "sqlite":
            url = f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}"
            backend = RelationalCacheBackend(url, options, clock=clock)
        elif kind == "mongodb":
            client = mongomock.MongoClient()
            client.drop_database(options.mongo_database)
            backend = DocumentCacheBackend("localhost:27017", options, clock=clock, client=client)
        else:
            backend = DisabledCacheBackend()
        await backend.initialize()
        created.append(backend)
        return backend

    yield _make

    for backend in created:
        await backend.close()


@pytest.fixture(params=BACKEND_KINDS)
async def backend(request, make_backend):
    """Every stateful backend, one run each."""
    return await make_backend(request.param)
