"""HTTP server for stored tiles and download jobs."""
from server.app import create_app

__all__ = ['create_app']
