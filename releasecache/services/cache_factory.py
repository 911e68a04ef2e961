"""Builds a cache backend from a backend type and a connection string.

Configuration problems (unknown type, empty or malformed connection string)
raise CacheConfigurationError right here, at the point of (re)configuration,
instead of surfacing on first use.
"""

import logging
from dataclasses import replace

from pymongo.errors import PyMongoError
from sqlalchemy.exc import SQLAlchemyError

from releasecache.config import CacheSettings, CacheType
from releasecache.database import resolve_database_url
from releasecache.services.backends import (
    CacheBackend,
    DisabledCacheBackend,
    DocumentCacheBackend,
    MemoryCacheBackend,
    RelationalCacheBackend,
)
from releasecache.services.backends.base import Clock, utcnow

logger = logging.getLogger(__name__)


class CacheConfigurationError(ValueError):
    """Invalid cache backend configuration."""


def create_backend(
    cache_type: CacheType | str,
    connection_string: str,
    options: CacheSettings,
    clock: Clock = utcnow,
) -> CacheBackend:
    """Construct (but do not initialize) the backend for ``cache_type``."""
    try:
        cache_type = CacheType(cache_type)
    except ValueError:
        raise CacheConfigurationError(f"Unknown cache type: {cache_type!r}") from None

    options = replace(options, cache_type=cache_type, connection_string=connection_string)
    logger.info("Creating cache backend | type=%s", cache_type.value)

    if cache_type == CacheType.DISABLED:
        return DisabledCacheBackend()

    if cache_type == CacheType.MEMORY:
        return MemoryCacheBackend(options, clock=clock)

    if not connection_string or not connection_string.strip():
        raise CacheConfigurationError(f"Cache connection string is empty for backend {cache_type.value}")
    connection_string = connection_string.strip()

    if cache_type == CacheType.SQLITE:
        url = resolve_database_url(connection_string, options.data_folder)
        try:
            return RelationalCacheBackend(url, options, clock=clock)
        except (SQLAlchemyError, OSError) as e:
            raise CacheConfigurationError(f"Invalid relational cache connection string: {e}") from e

    if cache_type == CacheType.MONGODB:
        try:
            return DocumentCacheBackend(connection_string, options, clock=clock)
        except (PyMongoError, ValueError) as e:
            raise CacheConfigurationError(f"Invalid MongoDB connection string: {e}") from e

    raise CacheConfigurationError(f"Unsupported cache type: {cache_type.value}")
