from .cache import CacheEntry, ExpiringCache
from .settings import CacheSettings

__all__ = ["CacheEntry", "CacheSettings", "ExpiringCache"]
