"""Services package - job-oriented façade over the tile store."""

from services.tile_service import TileService

__all__ = ['TileService']
