"""Shared utilities and helpers."""
from shared.errors import (
    FetchError,
    PersistenceError,
    TileKeeperError,
    ValidationError,
)
from shared.progress import ConsoleProgress

__all__ = [
    'ConsoleProgress',
    'FetchError',
    'PersistenceError',
    'TileKeeperError',
    'ValidationError',
]
