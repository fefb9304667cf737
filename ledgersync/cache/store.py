"""
Query Cache

Holds one entry per cache key. Entries are created on first fetch, replaced
wholesale on refetch and marked stale by invalidation. A stale entry is
refetched on its next read, never eagerly.

DESIGN DECISION: Values are never mutated in place.
``set`` swaps the whole entry, so a reader always sees either the old value
or the new one and no locking is needed on the single event loop.

Listeners are told about every change with a ``CacheEvent``. Sessions use
this to notice that something they are showing went stale.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog

from ledgersync.cache.keys import describe_key, key_matches


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    key: tuple
    value: Any
    stale: bool = False
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class CacheEvent:
    """A change to one entry: ``kind`` is ``"updated"`` or ``"invalidated"``."""
    kind: str
    key: tuple


CacheListener = Callable[[CacheEvent], None]


class QueryCache:
    """
    Keyed store of fetched query results.

    Shared by every session opened from one client, which is how a
    mutation in one view reaches the others.
    """

    def __init__(self):
        self._entries: dict[tuple, CacheEntry] = {}
        self._listeners: list[CacheListener] = []

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[tuple]:
        return list(self._entries)

    def get_entry(self, key: tuple) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def get(self, key: tuple, default: Any = None) -> Any:
        entry = self._entries.get(key)
        return entry.value if entry is not None else default

    def is_stale(self, key: tuple) -> bool:
        """Missing entries count as stale."""
        entry = self._entries.get(key)
        return entry is None or entry.stale

    def set(self, key: tuple, value: Any) -> CacheEntry:
        """Replace the entry for ``key``."""
        entry = CacheEntry(key=key, value=value)
        self._entries[key] = entry
        self._notify(CacheEvent(kind="updated", key=key))
        return entry

    def invalidate(self, pattern: tuple) -> list[tuple]:
        """
        Mark every entry matching ``pattern`` stale.

        Args:
            pattern: A full key or a key prefix (see ``key_matches``)

        Returns:
            Keys of the entries that were marked stale
        """
        matched = [key for key in self._entries if key_matches(pattern, key)]
        for key in matched:
            current = self._entries[key]
            self._entries[key] = CacheEntry(
                key=key,
                value=current.value,
                stale=True,
                updated_at=current.updated_at,
            )
        logger.debug(
            "cache_invalidated",
            pattern=describe_key(pattern),
            matched=len(matched),
        )
        # Listeners hear about the pattern even when nothing is cached yet:
        # a view may be mid-fetch for exactly that scope.
        self._notify(CacheEvent(kind="invalidated", key=pattern))
        return matched

    def remove(self, pattern: tuple) -> int:
        matched = [key for key in self._entries if key_matches(pattern, key)]
        for key in matched:
            del self._entries[key]
        return len(matched)

    def clear(self) -> None:
        self._entries.clear()

    async def fetch(
        self,
        key: tuple,
        loader: Callable[[], Awaitable[Any]],
        force: bool = False,
    ) -> Any:
        """
        Return the cached value, loading it first when missing or stale.

        Errors from ``loader`` propagate and leave the existing entry as it was.
        """
        entry = self._entries.get(key)
        if entry is not None and not entry.stale and not force:
            return entry.value

        logger.debug("cache_fetch", key=describe_key(key), force=force)
        value = await loader()
        self.set(key, value)
        return value

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: CacheEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "cache_listener_failed",
                    key=describe_key(event.key),
                    error=str(e),
                )
