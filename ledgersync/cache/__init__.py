"""Query cache and cache key construction."""

from ledgersync.cache.keys import (
    FilterItems,
    ResourceKind,
    build_key,
    describe_key,
    key_matches,
    summary_key,
)
from ledgersync.cache.store import CacheEntry, CacheEvent, QueryCache

__all__ = [
    "CacheEntry",
    "CacheEvent",
    "FilterItems",
    "QueryCache",
    "ResourceKind",
    "build_key",
    "describe_key",
    "key_matches",
    "summary_key",
]
