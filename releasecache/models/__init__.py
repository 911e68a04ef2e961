"""SQLAlchemy ORM models."""

from releasecache.models.base import Base
from releasecache.models.cached_queries import CachedQuery, CachedRelease

__all__ = ["Base", "CachedQuery", "CachedRelease"]
