"""In-memory LRU cache of tile bytes.

Sits in front of the SQLite store to accelerate repeated reads. It is never
the source of truth: every write goes to the database first.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import NamedTuple


class TileKey(NamedTuple):
    source: str
    z: int
    x: int
    y: int


class MemoryTileCache:
    """Strict LRU over ``TileKey -> bytes`` with a fixed entry capacity.

    ``OrderedDict`` keeps recency order: ``move_to_end`` promotes and
    ``popitem(last=False)`` evicts, both O(1). Capacity 0 disables caching.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            msg = 'capacity must not be negative'
            raise ValueError(msg)
        self.capacity = capacity
        self._entries: OrderedDict[TileKey, bytes] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        """Membership test without touching recency."""
        return key in self._entries

    def get(self, key: TileKey) -> bytes | None:
        with self._lock:
            data = self._entries.get(key)
            if data is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return data

    def touch(self, key: TileKey) -> bool:
        """Promote ``key`` to most-recently-used; True if it was cached."""
        with self._lock:
            if key not in self._entries:
                return False
            self._entries.move_to_end(key)
            return True

    def put(self, key: TileKey, data: bytes) -> None:
        if self.capacity == 0:
            return
        with self._lock:
            self._entries[key] = data
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def discard(self, key: TileKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def discard_range(
        self,
        source: str,
        z: int,
        min_x: int,
        max_x: int,
        min_y: int,
        max_y: int,
    ) -> int:
        """Evict every cached tile inside the inclusive rectangle.

        Returns:
            Number of evicted entries.
        """
        with self._lock:
            stale = [
                k
                for k in self._entries
                if k.source == source
                and k.z == z
                and min_x <= k.x <= max_x
                and min_y <= k.y <= max_y
            ]
            for k in stale:
                del self._entries[k]
            return len(stale)

    def keys(self) -> list[TileKey]:
        """Snapshot of keys from least to most recently used."""
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
