"""Pydantic models shared by the cache backends, the manager and the API.

Split into: search inputs, cached release data, and cache views.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

GIB = 1024 ** 3


# ═══════════════ SEARCH INPUTS ═══════════════

class SourceInfo(BaseModel):
    """Identity of the upstream source a query was sent to."""
    id: str
    name: str = ""
    kind: str = ""  # public, semi-private, private


class SearchQuery(BaseModel):
    """Structured query as built by the source query loop."""
    search_term: str | None = None
    categories: list[int] = Field(default_factory=list)
    cross_catalog_ids: dict[str, str | int] = Field(default_factory=dict)
    mode: str = "search"  # search, tvsearch, movie, music, book
    season: str | None = None
    episode: str | None = None
    limit: int | None = None
    offset: int | None = None
    is_test: bool = False


# ═══════════════ RELEASES ═══════════════

class ReleaseInfo(BaseModel):
    """One search result. Opaque to the cache: stored and returned as-is."""

    title: str
    guid: str | None = None
    link: str | None = None
    details: str | None = None
    publish_date: datetime | None = None
    category: list[int] = Field(default_factory=list)
    size: int | None = None
    files: int | None = None
    grabs: int | None = None
    description: str | None = None

    # external catalog ids
    rage_id: int | None = None
    tvdb_id: int | None = None
    imdb: int | None = None
    tmdb: int | None = None
    tvmaze_id: int | None = None
    trakt_id: int | None = None
    douban_id: int | None = None

    genres: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    subs: list[str] = Field(default_factory=list)
    year: int | None = None

    # book / music metadata
    author: str | None = None
    book_title: str | None = None
    publisher: str | None = None
    artist: str | None = None
    album: str | None = None
    label: str | None = None
    track: str | None = None

    seeders: int | None = None
    peers: int | None = None
    poster: str | None = None

    # torrent policy
    info_hash: str | None = None
    magnet_uri: str | None = None
    minimum_ratio: float | None = None
    minimum_seed_time: int | None = None
    download_volume_factor: float | None = None
    upload_volume_factor: float | None = None

    @property
    def gain(self) -> float | None:
        """Size in GiB multiplied by seeders."""
        if self.size is None or self.seeders is None:
            return None
        return self.size / GIB * self.seeders


# ═══════════════ CACHE VIEWS ═══════════════

class CachedResultView(BaseModel):
    """A cached release plus the source it came from, for the recent-activity listing."""
    release: ReleaseInfo
    source_id: str
    source_name: str = ""
    source_kind: str = ""
    first_seen: datetime


class CacheStatus(BaseModel):
    backend: str
    entries: int = 0
    results: int = 0
    sources: int = 0
