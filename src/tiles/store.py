"""Persistent tile store with an in-memory LRU in front.

This module provides TileStore, the durable key-value store for tile bytes
keyed by (source, z, x, y).
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from domain.models import SourceStats, TileRange
from shared.constants import DEFAULT_CACHE_SIZE
from tiles.database import TileDatabase
from tiles.memory import MemoryTileCache, TileKey

logger = logging.getLogger(__name__)

_UPSERT_SQL = '''
    INSERT INTO tiles (source, z, x, y, timestamp, data)
    VALUES (?, ?, ?, ?, ?, ?)
    ON CONFLICT (source, z, x, y)
    DO UPDATE SET timestamp = excluded.timestamp, data = excluded.data
'''


class TileStore:
    """SQLite tile store fronted by a strict LRU cache.

    Features:
    - Upsert by primary key, committed before ``put`` returns
    - Range delete per source and zoom that also evicts cached copies
    - Per-source aggregate statistics

    Usage:
        store = TileStore.open('data/tiles.db', cache_size=1000)
        store.put('arcgis', 15, 100, 200, tile_bytes)
        data = store.get('arcgis', 15, 100, 200)
        store.close()
    """

    def __init__(
        self,
        database: TileDatabase,
        cache_size: int = DEFAULT_CACHE_SIZE,
        *,
        owns_database: bool = False,
    ) -> None:
        """Initialize tile store.

        Args:
            database: Open database shared with the job registry.
            cache_size: LRU capacity in tiles. 0 disables the memory cache.
            owns_database: Close ``database`` together with the store.
        """
        self.database = database
        self.cache = MemoryTileCache(cache_size)
        self._owns_database = owns_database
        logger.debug('TileStore ready (cache capacity %d)', cache_size)

    @classmethod
    def open(
        cls, db_path: str | Path, cache_size: int = DEFAULT_CACHE_SIZE
    ) -> TileStore:
        """Open a store over its own database file."""
        return cls(TileDatabase(db_path), cache_size, owns_database=True)

    def get(self, source: str, z: int, x: int, y: int) -> bytes | None:
        """Get tile bytes.

        Cache hits are promoted to most-recently-used; backend hits are
        inserted into the cache.

        Returns:
            Tile data, or None if the tile is not stored.
        """
        key = TileKey(source, z, x, y)
        data = self.cache.get(key)
        if data is not None:
            return data

        row = self.database.query_one(
            'SELECT data FROM tiles WHERE source = ? AND z = ? AND x = ? AND y = ?',
            (source, z, x, y),
        )
        if row is None:
            return None
        data = bytes(row[0])
        self.cache.put(key, data)
        return data

    def has(self, source: str, z: int, x: int, y: int) -> bool:
        """Check tile existence without loading bytes from the backend."""
        if self.cache.touch(TileKey(source, z, x, y)):
            return True
        row = self.database.query_one(
            'SELECT 1 FROM tiles WHERE source = ? AND z = ? AND x = ? AND y = ?',
            (source, z, x, y),
        )
        return row is not None

    def put(self, source: str, z: int, x: int, y: int, data: bytes) -> None:
        """Store tile, replacing any previous bytes for the same key.

        Raises:
            PersistenceError: if the backend write fails. The cache is left
                untouched in that case.
        """
        now = int(time.time())
        with self.database.transaction() as conn:
            conn.execute(_UPSERT_SQL, (source, z, x, y, now, data))
        self.cache.put(TileKey(source, z, x, y), data)

    def delete(self, source: str, z: int, x: int, y: int) -> bool:
        """Delete one tile.

        Returns:
            True if a stored tile was removed.
        """
        with self.database.transaction() as conn:
            cursor = conn.execute(
                'DELETE FROM tiles WHERE source = ? AND z = ? AND x = ? AND y = ?',
                (source, z, x, y),
            )
        self.cache.discard(TileKey(source, z, x, y))
        return cursor.rowcount > 0

    def delete_range(self, source: str, z: int, tile_range: TileRange) -> int:
        """Delete every tile of ``source`` at ``z`` inside the inclusive range.

        Returns:
            Number of rows removed from the backend.
        """
        with self.database.transaction() as conn:
            cursor = conn.execute(
                '''DELETE FROM tiles
                   WHERE source = ? AND z = ?
                     AND x BETWEEN ? AND ? AND y BETWEEN ? AND ?''',
                (
                    source,
                    z,
                    tile_range.min_x,
                    tile_range.max_x,
                    tile_range.min_y,
                    tile_range.max_y,
                ),
            )
        self.cache.discard_range(
            source,
            z,
            tile_range.min_x,
            tile_range.max_x,
            tile_range.min_y,
            tile_range.max_y,
        )
        deleted = max(cursor.rowcount, 0)
        logger.debug(
            'Deleted %d tiles of %s at z%d x=%d..%d y=%d..%d',
            deleted,
            source,
            z,
            tile_range.min_x,
            tile_range.max_x,
            tile_range.min_y,
            tile_range.max_y,
        )
        return deleted

    def stats(self) -> list[SourceStats]:
        """Per-source tile count, byte size and timestamp span."""
        rows = self.database.query_all(
            '''SELECT source, COUNT(*), COALESCE(SUM(LENGTH(data)), 0),
                      MIN(timestamp), MAX(timestamp)
               FROM tiles GROUP BY source ORDER BY source'''
        )
        return [
            SourceStats(
                source=source,
                tile_count=count,
                total_size_bytes=size,
                oldest_tile=oldest,
                newest_tile=newest,
            )
            for source, count, size, oldest, newest in rows
        ]

    def total_count(self) -> int:
        row = self.database.query_one('SELECT COUNT(*) FROM tiles')
        return row[0] if row else 0

    def count(self, source: str) -> int:
        row = self.database.query_one(
            'SELECT COUNT(*) FROM tiles WHERE source = ?', (source,)
        )
        return row[0] if row else 0

    def close(self) -> None:
        """Drop cached tiles and close the database if the store owns it."""
        self.cache.clear()
        if self._owns_database:
            self.database.close()

    def __enter__(self) -> TileStore:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
