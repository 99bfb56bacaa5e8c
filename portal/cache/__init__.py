"""Key-value cache backends and the signed download URL cache."""

from portal.cache.backends import KeyValueCache, MemoryCache, RedisCache, create_cache
from portal.cache.url_cache import DownloadUrlCache

__all__ = [
    "KeyValueCache",
    "MemoryCache",
    "RedisCache",
    "create_cache",
    "DownloadUrlCache",
]
