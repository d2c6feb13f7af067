"""HTTP client infrastructure."""
from infrastructure.http.client import (
    close_session,
    make_http_session,
    release_response,
)
from infrastructure.http.geocoder import location_for_bounds

__all__ = [
    'close_session',
    'location_for_bounds',
    'make_http_session',
    'release_response',
]
