"""Result-cache storage backends."""

from releasecache.services.backends.base import CacheBackend
from releasecache.services.backends.disabled import DisabledCacheBackend
from releasecache.services.backends.document import DocumentCacheBackend
from releasecache.services.backends.memory import MemoryCacheBackend
from releasecache.services.backends.relational import RelationalCacheBackend

__all__ = [
    "CacheBackend",
    "DisabledCacheBackend",
    "DocumentCacheBackend",
    "MemoryCacheBackend",
    "RelationalCacheBackend",
]
