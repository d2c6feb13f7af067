"""Domain layer - business models."""
from domain.models import (
    DownloadJob,
    GeoBounds,
    JobView,
    ServiceSettings,
    TileCoord,
    TileRange,
    TileSource,
)

__all__ = [
    'DownloadJob',
    'GeoBounds',
    'JobView',
    'ServiceSettings',
    'TileCoord',
    'TileRange',
    'TileSource',
]
