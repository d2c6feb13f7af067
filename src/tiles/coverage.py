"""Web Mercator tile coverage for geographic bounds.

Pure functions that map latitude/longitude boxes onto XYZ tile indices.
Counting is done in closed form per zoom level so that huge requests can be
estimated without enumerating their tiles.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from domain.models import GeoBounds, TileCoord, TileRange
from shared.constants import (
    MAX_ZOOM,
    MIN_ZOOM,
    WORLD_LAT_MAX_DEG,
    WORLD_LNG_HALF_SPAN_DEG,
    WORLD_LNG_SPAN_DEG,
)
from shared.errors import InvalidBoundsError, InvalidZoomRangeError

if TYPE_CHECKING:
    from collections.abc import Iterator


def point_to_tile(lat: float, lng: float, zoom: int) -> tuple[int, int]:
    """Tile (x, y) containing the WGS84 point at the given zoom.

    Points outside the Mercator limits give indices outside [0, 2^zoom - 1].
    """
    n = 2**zoom
    x = math.floor((lng + WORLD_LNG_HALF_SPAN_DEG) / WORLD_LNG_SPAN_DEG * n)
    lat_rad = math.radians(lat)
    merc = math.log(math.tan(lat_rad) + 1 / math.cos(lat_rad))
    y = math.floor((1 - merc / math.pi) / 2 * n)
    return x, y


def tile_to_point(x: int, y: int, zoom: int) -> tuple[float, float]:
    """(lat, lng) of the north-west corner of a tile."""
    n = 2**zoom
    lng = x / n * WORLD_LNG_SPAN_DEG - WORLD_LNG_HALF_SPAN_DEG
    lat = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * y / n))))
    return lat, lng


def tile_range(bounds: GeoBounds, zoom: int) -> TileRange:
    """Inclusive tile rectangle covering ``bounds`` at ``zoom``.

    Corners are taken element-wise, so swapped corners still give a valid
    range. Indices are clamped to the grid: east=180 or a latitude right at
    the Mercator limit would otherwise land one tile outside it.
    """
    nw_x, nw_y = point_to_tile(bounds.north, bounds.west, zoom)
    se_x, se_y = point_to_tile(bounds.south, bounds.east, zoom)
    last = 2**zoom - 1

    def _clamp(v: int) -> int:
        return min(max(v, 0), last)

    return TileRange(
        min_x=_clamp(min(nw_x, se_x)),
        max_x=_clamp(max(nw_x, se_x)),
        min_y=_clamp(min(nw_y, se_y)),
        max_y=_clamp(max(nw_y, se_y)),
        z=zoom,
    )


def enumerate_tiles(
    bounds: GeoBounds, min_zoom: int, max_zoom: int
) -> Iterator[TileCoord]:
    """Yield every tile of the zoom range, ordered by z, then x, then y."""
    for z in range(min_zoom, max_zoom + 1):
        rng = tile_range(bounds, z)
        for x in range(rng.min_x, rng.max_x + 1):
            for y in range(rng.min_y, rng.max_y + 1):
                yield TileCoord(x, y, z)


def count_tiles(bounds: GeoBounds, min_zoom: int, max_zoom: int) -> int:
    """Number of tiles ``enumerate_tiles`` would yield, in O(zoom range)."""
    return sum(tile_range(bounds, z).count for z in range(min_zoom, max_zoom + 1))


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _is_zoom(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def is_valid_bounds(bounds: GeoBounds | Mapping[str, Any] | None) -> bool:
    if isinstance(bounds, GeoBounds):
        north, south, east, west = bounds.north, bounds.south, bounds.east, bounds.west
    elif isinstance(bounds, Mapping):
        try:
            north, south = bounds['north'], bounds['south']
            east, west = bounds['east'], bounds['west']
        except KeyError:
            return False
        if not all(_is_number(v) for v in (north, south, east, west)):
            return False
    else:
        return False

    if not (-WORLD_LAT_MAX_DEG <= north <= WORLD_LAT_MAX_DEG):
        return False
    if not (-WORLD_LAT_MAX_DEG <= south <= WORLD_LAT_MAX_DEG):
        return False
    if not (-WORLD_LNG_HALF_SPAN_DEG <= east <= WORLD_LNG_HALF_SPAN_DEG):
        return False
    if not (-WORLD_LNG_HALF_SPAN_DEG <= west <= WORLD_LNG_HALF_SPAN_DEG):
        return False
    return north > south


def is_valid_zoom_range(min_zoom: Any, max_zoom: Any) -> bool:
    if not (_is_zoom(min_zoom) and _is_zoom(max_zoom)):
        return False
    if not (MIN_ZOOM <= min_zoom <= MAX_ZOOM):
        return False
    if not (MIN_ZOOM <= max_zoom <= MAX_ZOOM):
        return False
    return min_zoom <= max_zoom


def is_valid_tile(x: int, y: int, z: int) -> bool:
    if not (MIN_ZOOM <= z <= MAX_ZOOM):
        return False
    max_tile = 2**z - 1
    return 0 <= x <= max_tile and 0 <= y <= max_tile


def coerce_bounds(bounds: GeoBounds | Mapping[str, Any]) -> GeoBounds:
    """Validate external bounds input and return it as ``GeoBounds``.

    Raises:
        InvalidBoundsError: if fields are missing, non-numeric, outside the
            Web Mercator limits, or north is not above south.
    """
    if not is_valid_bounds(bounds):
        msg = (
            'Invalid bounds. Must include numeric north, south, east, west with '
            f'|lat| <= {WORLD_LAT_MAX_DEG}, |lng| <= 180 and north > south.'
        )
        raise InvalidBoundsError(msg)
    if isinstance(bounds, GeoBounds):
        return bounds
    try:
        return GeoBounds(
            north=bounds['north'],
            south=bounds['south'],
            east=bounds['east'],
            west=bounds['west'],
        )
    except PydanticValidationError as e:
        raise InvalidBoundsError(str(e)) from e


def validate_zoom_range(min_zoom: Any, max_zoom: Any) -> None:
    """Raise ``InvalidZoomRangeError`` unless both zooms are valid and ordered."""
    if not is_valid_zoom_range(min_zoom, max_zoom):
        msg = (
            f'Invalid zoom range {min_zoom!r}-{max_zoom!r}. '
            f'Zoom must be an integer between {MIN_ZOOM}-{MAX_ZOOM} '
            'and minZoom <= maxZoom.'
        )
        raise InvalidZoomRangeError(msg)


def validate_bounds(bounds: GeoBounds | Mapping[str, Any] | None) -> GeoBounds:
    """Alias of ``coerce_bounds`` that also rejects ``None``."""
    if bounds is None:
        msg = 'Bounds are required'
        raise InvalidBoundsError(msg)
    return coerce_bounds(bounds)
