"""
Cache layer: where plaintext bodies live (store.py) and which requests
may use them (policy.py).
"""

from .store import CacheStore, FileCacheStore, CacheEntry
from .policy import CacheablePredicate, is_cacheable, cache_key

__all__ = [
    "CacheStore",
    "FileCacheStore",
    "CacheEntry",
    "CacheablePredicate",
    "is_cacheable",
    "cache_key",
]
