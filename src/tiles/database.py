"""SQLite backend shared by the tile store and the job registry.

One database file holds both tile blobs and job records so that a store can
be copied or moved as a single artifact.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from shared.errors import PersistenceError

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

logger = logging.getLogger(__name__)

_SCHEMA = '''
    CREATE TABLE IF NOT EXISTS tiles (
        source TEXT NOT NULL,
        z INTEGER NOT NULL,
        x INTEGER NOT NULL,
        y INTEGER NOT NULL,
        timestamp INTEGER NOT NULL,
        data BLOB NOT NULL,
        PRIMARY KEY (source, z, x, y)
    );

    CREATE TABLE IF NOT EXISTS download_jobs (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        source TEXT NOT NULL,
        bounds TEXT NOT NULL,
        min_zoom INTEGER NOT NULL,
        max_zoom INTEGER NOT NULL,
        total_tiles INTEGER NOT NULL,
        downloaded_tiles INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'pending',
        country TEXT DEFAULT NULL,
        city TEXT DEFAULT NULL,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_jobs_created ON download_jobs(created_at);
'''


class TileDatabase:
    """Single SQLite connection guarded by a re-entrant lock.

    Features:
    - WAL mode so readers in other connections proceed while a write is active
    - Schema created on open
    - ``sqlite3.Error`` surfaced as ``PersistenceError``

    Usage:
        db = TileDatabase('data/tiles.db')
        with db.transaction() as conn:
            conn.execute('DELETE FROM tiles WHERE source = ?', ('google',))
        db.close()
    """

    def __init__(self, db_path: str | Path) -> None:
        """Open (and create if needed) the database file.

        Args:
            db_path: Path to the SQLite file, or ``':memory:'``.

        Raises:
            PersistenceError: if the file cannot be opened or initialised.
        """
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        if self.db_path != ':memory:':
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.execute('PRAGMA journal_mode=WAL')
            conn.execute('PRAGMA synchronous=NORMAL')
            conn.execute('PRAGMA cache_size=-64000')  # 64MB cache
            conn.executescript(_SCHEMA)
            conn.commit()
        except sqlite3.Error as e:
            msg = f'Failed to open tile database {self.db_path}: {e}'
            raise PersistenceError(msg) from e
        self._conn: sqlite3.Connection | None = conn
        logger.info('Database initialized: %s', self.db_path)

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            msg = f'Tile database {self.db_path} is closed'
            raise PersistenceError(msg)
        return self._conn

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialised write block; commits on success, rolls back on error."""
        with self._lock:
            conn = self.connection
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                msg = f'Database write failed: {e}'
                raise PersistenceError(msg) from e
            except BaseException:
                conn.rollback()
                raise

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> tuple | None:
        with self._lock:
            try:
                return self.connection.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                msg = f'Database read failed: {e}'
                raise PersistenceError(msg) from e

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        with self._lock:
            try:
                return self.connection.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                msg = f'Database read failed: {e}'
                raise PersistenceError(msg) from e

    @property
    def closed(self) -> bool:
        return self._conn is None

    def close(self) -> None:
        """Close the connection. Safe to call twice."""
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None
        logger.info('Database closed')

    def __enter__(self) -> TileDatabase:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
