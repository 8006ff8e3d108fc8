"""In-process key/value cache with per-entry expiry.

One instance backs the permission cache and another the TOTP replay cache.
Dictionary operations are guarded by a thread lock so the cache is safe to
use from both the event loop and FastAPI's threadpool. Loads through
:meth:`TtlCache.get_or_set` are serialized per key with an asyncio lock.

**Consistency rules:**

1. A value is only stored after its loader finishes. A cancelled or failed
   loader stores nothing.
2. Invalidating a key while its loader is running discards that load's
   result: the caller still receives it, but it is not cached.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import threading
import time
import weakref
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Hashable

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

V = TypeVar("V")

_MISSING = object()

DEFAULT_MAX_ENTRIES = 100_000


class TtlCache:
    """Key/value store where each entry expires after its own TTL.

    :param default_ttl: Seconds an entry lives when no TTL is given
    :param max_entries: Soft cap on stored entries, enforced on insert
    :param clock: Monotonic clock returning seconds, replaceable in tests
    """

    def __init__(
        self,
        default_ttl: float,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl <= 0:
            msg = "Cache TTL must be greater than 0"
            raise ValueError(msg)
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[Hashable, tuple[Any, float]] = {}
        # (expires_at, sequence, key); entries replaced or removed stay until popped
        self._expiry_heap: list[tuple[float, int, Hashable]] = []
        self._sequence = itertools.count()
        self._loading: dict[Hashable, object] = {}
        self._lock = threading.Lock()
        self._key_locks: weakref.WeakValueDictionary[Hashable, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._entries)

    def _live_value(self, key: Hashable) -> Any:
        """Return the stored value or _MISSING. Caller holds the lock."""
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return _MISSING
        return value

    def _pop_heap_entry(self) -> tuple[float, Hashable] | None:
        """Pop the soonest expiring entry still stored. Caller holds the lock."""
        while self._expiry_heap:
            expires_at, _, key = heapq.heappop(self._expiry_heap)
            entry = self._entries.get(key)
            if entry is not None and entry[1] == expires_at:
                return expires_at, key
        return None

    def _purge_expired(self) -> None:
        now = self._clock()
        while self._expiry_heap and self._expiry_heap[0][0] <= now:
            popped = self._pop_heap_entry()
            if popped is None:
                break
            expires_at, key = popped
            if expires_at > now:
                heapq.heappush(
                    self._expiry_heap,
                    (expires_at, next(self._sequence), key),
                )
                break
            del self._entries[key]

    def _compact_heap(self) -> None:
        self._expiry_heap = [
            (expires_at, next(self._sequence), key)
            for key, (_, expires_at) in self._entries.items()
        ]
        heapq.heapify(self._expiry_heap)

    def _store(self, key: Hashable, value: Any, ttl: float | None) -> None:
        """Insert an entry. Caller holds the lock."""
        if len(self._entries) >= self.max_entries and key not in self._entries:
            self._purge_expired()
            if len(self._entries) >= self.max_entries:
                popped = self._pop_heap_entry()
                if popped is not None:
                    del self._entries[popped[1]]
        lifetime = self.default_ttl if ttl is None else ttl
        expires_at = self._clock() + lifetime
        self._entries[key] = (value, expires_at)
        heapq.heappush(self._expiry_heap, (expires_at, next(self._sequence), key))
        if len(self._expiry_heap) > 2 * len(self._entries) + 64:
            self._compact_heap()

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the cached value for a key, or default if absent or expired."""
        with self._lock:
            value = self._live_value(key)
        return default if value is _MISSING else value

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return self._live_value(key) is not _MISSING

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        """Store a value, replacing any existing entry."""
        with self._lock:
            self._store(key, value, ttl)

    def add(self, key: Hashable, value: Any, ttl: float | None = None) -> bool:
        """Store a value only if the key has no live entry.

        The check and the insert happen under one lock acquisition.

        :return: True if the value was stored, False if the key was present
        """
        with self._lock:
            if self._live_value(key) is not _MISSING:
                return False
            self._store(key, value, ttl)
            return True

    def remove(self, key: Hashable) -> bool:
        """Remove a key and discard any in-flight load for it.

        :return: True if a live or loading entry was dropped
        """
        with self._lock:
            had_entry = self._entries.pop(key, _MISSING) is not _MISSING
            was_loading = self._loading.pop(key, None) is not None
        return had_entry or was_loading

    def remove_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """Remove every key matching a predicate, including in-flight loads.

        :return: Number of stored entries removed
        """
        with self._lock:
            matched = [key for key in self._entries if predicate(key)]
            for key in matched:
                del self._entries[key]
            for key in [key for key in self._loading if predicate(key)]:
                del self._loading[key]
        return len(matched)

    def clear(self) -> None:
        """Drop all entries and discard in-flight loads."""
        with self._lock:
            self._entries.clear()
            self._expiry_heap.clear()
            self._loading.clear()

    def _key_lock(self, key: Hashable) -> asyncio.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._key_locks[key] = lock
            return lock

    async def get_or_set(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[V]],
        ttl: float | None = None,
    ) -> V:
        """Return the cached value, or load, store and return it.

        Concurrent callers for the same key wait for the first loader instead
        of loading again. ``None`` results are cached like any other value.

        :param key: Cache key
        :param loader: Coroutine factory producing the value on a miss
        :param ttl: Entry lifetime in seconds, default TTL if None
        :return: The cached or freshly loaded value
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        lock = self._key_lock(key)
        async with lock:
            value = self.get(key, _MISSING)
            if value is not _MISSING:
                return value

            token = object()
            with self._lock:
                self._loading[key] = token
            try:
                value = await loader()
            except BaseException:
                with self._lock:
                    if self._loading.get(key) is token:
                        del self._loading[key]
                raise

            with self._lock:
                if self._loading.get(key) is token:
                    del self._loading[key]
                    self._store(key, value, ttl)
                else:
                    LOGGER.debug("Discarding load for invalidated key %s", key)
            return value
