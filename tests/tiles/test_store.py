"""Tests for TileStore and TileDatabase."""

from __future__ import annotations

import sqlite3
import tempfile
from pathlib import Path

import pytest

from domain.models import TileRange
from shared.errors import PersistenceError
from tiles.database import TileDatabase
from tiles.memory import TileKey
from tiles.store import TileStore


@pytest.fixture
def temp_dir():
    """Create temporary directory for the database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_dir):
    """Create TileStore with a small cache."""
    ts = TileStore.open(temp_dir / 'tiles.db', cache_size=3)
    yield ts
    ts.close()


class TestTileDatabase:
    """Tests for TileDatabase."""

    def test_creates_parent_directory(self, temp_dir):
        db = TileDatabase(temp_dir / 'nested' / 'tiles.db')
        assert (temp_dir / 'nested' / 'tiles.db').exists()
        db.close()

    def test_wal_mode(self, temp_dir):
        with TileDatabase(temp_dir / 'tiles.db') as db:
            mode = db.query_one('PRAGMA journal_mode')[0]
        assert mode.lower() == 'wal'

    def test_schema_created(self, temp_dir):
        with TileDatabase(temp_dir / 'tiles.db') as db:
            names = {r[0] for r in db.query_all("SELECT name FROM sqlite_master WHERE type='table'")}
        assert {'tiles', 'download_jobs'} <= names

    def test_closed_database_raises(self, temp_dir):
        db = TileDatabase(temp_dir / 'tiles.db')
        db.close()
        db.close()
        assert db.closed
        with pytest.raises(PersistenceError):
            db.query_one('SELECT 1')

    def test_sql_error_wrapped(self, temp_dir):
        with TileDatabase(temp_dir / 'tiles.db') as db:
            with pytest.raises(PersistenceError) as exc_info:
                db.query_all('SELECT * FROM no_such_table')
            assert isinstance(exc_info.value.__cause__, sqlite3.Error)

    def test_transaction_rolls_back(self, temp_dir):
        with TileDatabase(temp_dir / 'tiles.db') as db:
            with pytest.raises(PersistenceError):
                with db.transaction() as conn:
                    conn.execute(
                        "INSERT INTO tiles VALUES ('a', 1, 1, 1, 0, x'00')"
                    )
                    conn.execute('INSERT INTO missing VALUES (1)')
            assert db.query_one('SELECT COUNT(*) FROM tiles')[0] == 0


class TestTileStore:
    """Tests for TileStore."""

    def test_put_and_get(self, store):
        store.put('arcgis', 15, 100, 200, b'tile')
        assert store.get('arcgis', 15, 100, 200) == b'tile'

    def test_get_missing_returns_none(self, store):
        assert store.get('arcgis', 15, 1, 1) is None
        assert not store.has('arcgis', 15, 1, 1)

    def test_put_overwrites(self, store):
        store.put('arcgis', 15, 100, 200, b'old')
        store.put('arcgis', 15, 100, 200, b'new')
        assert store.get('arcgis', 15, 100, 200) == b'new'
        assert store.total_count() == 1

    def test_identical_put_is_idempotent(self, store):
        store.put('google', 3, 1, 1, b'same')
        store.put('google', 3, 1, 1, b'same')
        assert store.has('google', 3, 1, 1)
        assert store.stats()[0].tile_count == 1

    def test_sources_are_separate(self, store):
        store.put('arcgis', 15, 1, 2, b'a')
        store.put('google', 15, 1, 2, b'g')
        assert store.get('arcgis', 15, 1, 2) == b'a'
        assert store.get('google', 15, 1, 2) == b'g'

    def test_backend_read_populates_cache(self, temp_dir):
        db = TileDatabase(temp_dir / 'tiles.db')
        writer = TileStore(db, cache_size=0)
        writer.put('arcgis', 5, 1, 1, b'data')
        reader = TileStore(db, cache_size=5)
        assert TileKey('arcgis', 5, 1, 1) not in reader.cache
        assert reader.get('arcgis', 5, 1, 1) == b'data'
        assert TileKey('arcgis', 5, 1, 1) in reader.cache
        db.close()

    def test_evicted_tile_still_in_backend(self, store):
        for x in range(4):
            store.put('arcgis', 10, x, 0, bytes([x]))
        assert TileKey('arcgis', 10, 0, 0) not in store.cache
        hits = store.cache.hits
        assert store.get('arcgis', 10, 0, 0) == b'\x00'
        assert store.cache.hits == hits

    def test_delete(self, store):
        store.put('arcgis', 10, 1, 1, b'x')
        assert store.delete('arcgis', 10, 1, 1)
        assert not store.delete('arcgis', 10, 1, 1)
        assert not store.has('arcgis', 10, 1, 1)

    def test_delete_range_exact(self, store):
        for x in range(4):
            for y in range(4):
                store.put('arcgis', 10, x, y, b'x')
        store.put('arcgis', 11, 1, 1, b'other zoom')
        store.put('google', 10, 1, 1, b'other source')

        rng = TileRange(min_x=1, max_x=2, min_y=1, max_y=2, z=10)
        assert store.delete_range('arcgis', 10, rng) == 4

        for x in range(4):
            for y in range(4):
                inside = 1 <= x <= 2 and 1 <= y <= 2
                assert store.has('arcgis', 10, x, y) is not inside
        assert store.has('arcgis', 11, 1, 1)
        assert store.has('google', 10, 1, 1)

    def test_delete_range_evicts_cache(self, store):
        store.put('arcgis', 10, 1, 1, b'x')
        assert TileKey('arcgis', 10, 1, 1) in store.cache
        store.delete_range('arcgis', 10, TileRange(min_x=0, max_x=5, min_y=0, max_y=5, z=10))
        assert TileKey('arcgis', 10, 1, 1) not in store.cache
        assert store.get('arcgis', 10, 1, 1) is None

    def test_stats(self, store):
        store.put('arcgis', 1, 0, 0, b'12345')
        store.put('arcgis', 1, 1, 0, b'123')
        store.put('google', 1, 0, 0, b'1')
        stats = {s.source: s for s in store.stats()}
        assert stats['arcgis'].tile_count == 2
        assert stats['arcgis'].total_size_bytes == 8
        assert stats['arcgis'].oldest_tile <= stats['arcgis'].newest_tile
        assert stats['google'].tile_count == 1
        assert store.total_count() == 3
        assert store.count('arcgis') == 2
        assert store.count('esri-world-imagery') == 0

    def test_survives_reopen(self, temp_dir):
        with TileStore.open(temp_dir / 'tiles.db') as first:
            first.put('arcgis', 2, 1, 1, b'persisted')
        with TileStore.open(temp_dir / 'tiles.db') as second:
            assert second.get('arcgis', 2, 1, 1) == b'persisted'

    def test_failed_put_leaves_cache_untouched(self, temp_dir):
        db = TileDatabase(temp_dir / 'tiles.db')
        store = TileStore(db, cache_size=5)
        db.close()
        with pytest.raises(PersistenceError):
            store.put('arcgis', 1, 0, 0, b'x')
        assert len(store.cache) == 0
