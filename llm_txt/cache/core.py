"""
Core cache data structures.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any


class CacheCategory(Enum):
    """Categories of cached data with different lifetimes."""
    IDENTIFIER = "identifier"   # handle -> canonical id, minutes
    ESTIMATE = "estimate"       # pricing fingerprint -> estimate, ~1 minute
    PROFILE = "profile"         # primary entity metadata, ~1 minute


@dataclass
class CacheEntry:
    """
    A cached value with its absolute expiry time.

    Expiry is measured on the owning cache's clock; a read at or after
    ``expires_at`` treats the entry as absent.
    """
    value: Any
    expires_at: float
    category: CacheCategory = CacheCategory.PROFILE

    def is_expired(self, now: float) -> bool:
        """Check if the entry is past its TTL."""
        return now >= self.expires_at

    def ttl_remaining(self, now: float) -> float:
        """Seconds until expiry (negative once expired)."""
        return self.expires_at - now
