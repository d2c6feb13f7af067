"""Tile storage and download system.

This module provides:
- TileStore: SQLite-backed tile storage with an in-memory LRU in front
- JobRegistry: persisted download job records
- DownloadScheduler: rate-limited concurrent tile downloads
- TileFetcher / RequestGate: HTTP fetch of one tile and global request spacing
"""

from tiles.database import TileDatabase
from tiles.executor import DownloadScheduler
from tiles.fetcher import RequestGate, TileFetcher
from tiles.registry import JobRegistry
from tiles.store import TileStore

__all__ = [
    'DownloadScheduler',
    'JobRegistry',
    'RequestGate',
    'TileDatabase',
    'TileFetcher',
    'TileStore',
]
