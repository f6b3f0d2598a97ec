"""
In-memory caching with TTL expiry, LRU bounding and request coalescing.
"""
from .core import CacheCategory, CacheEntry
from .ttl_policies import (
    TTL_CONFIG,
    estimate_key,
    get_ttl_for_category,
    identifier_key,
)
from .coalescer import RequestCoalescer
from .manager import TTLCache

__all__ = [
    # Core types
    "CacheCategory",
    "CacheEntry",
    # TTL policies
    "TTL_CONFIG",
    "get_ttl_for_category",
    "identifier_key",
    "estimate_key",
    # Coalescing
    "RequestCoalescer",
    # Cache
    "TTLCache",
]
