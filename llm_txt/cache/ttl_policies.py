"""
TTL configuration by cache category.
"""
from typing import Dict

from config.settings import settings

from .core import CacheCategory


# TTL configuration by category (in seconds)
TTL_CONFIG: Dict[CacheCategory, int] = {
    CacheCategory.IDENTIFIER: settings.identifier_ttl_seconds,  # identifiers rarely change
    CacheCategory.ESTIMATE: settings.estimate_ttl_seconds,
    CacheCategory.PROFILE: 60,
}


def get_ttl_for_category(category: CacheCategory) -> int:
    """
    Get the TTL for a cache category.

    Args:
        category: The cache category

    Returns:
        TTL in seconds
    """
    return TTL_CONFIG.get(category, TTL_CONFIG[CacheCategory.PROFILE])


def identifier_key(provider: str, handle: str) -> str:
    """Cache key for a handle -> canonical id resolution."""
    return f"id:{provider}:{handle}"


def estimate_key(provider: str, fingerprint: str) -> str:
    """Cache key for a price estimate."""
    return f"estimate:{provider}:{fingerprint}"
