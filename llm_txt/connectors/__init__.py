"""
Provider connectors.

Each connector implements the small capability set the aggregator
drives: resolve an identifier, fetch a page, fetch one related item,
fetch the primary entity.
"""
from .base import Connector
from .bluesky import BlueskyConnector
from .farcaster import FarcasterConnector
from .git import GitConnector
from .rss import RssConnector

__all__ = [
    "Connector",
    "FarcasterConnector",
    "BlueskyConnector",
    "RssConnector",
    "GitConnector",
]
