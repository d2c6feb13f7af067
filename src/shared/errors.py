"""Exception hierarchy shared by the tile store, scheduler and service layer."""

from __future__ import annotations


class TileKeeperError(Exception):
    """Base class for all application errors."""


class ValidationError(TileKeeperError, ValueError):
    """Input rejected before any state was touched."""


class InvalidBoundsError(ValidationError):
    """Geographic bounds are malformed or outside Web Mercator limits."""


class InvalidZoomRangeError(ValidationError):
    """Zoom range is outside [0, 22] or inverted."""


class UnknownSourceError(ValidationError):
    """Tile source id is not registered."""


class JobNotFoundError(ValidationError):
    """No job record exists for the given id."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f'Job not found: {job_id}')
        self.job_id = job_id


class FetchError(TileKeeperError):
    """A single tile could not be downloaded."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class PersistenceError(TileKeeperError):
    """The SQLite backend failed; the current operation cannot complete."""


class ServerUnavailableError(TileKeeperError):
    """A running TileKeeper server could not be reached or gave no usable answer."""
