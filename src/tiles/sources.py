"""Registry of remote imagery providers.

Each source is an XYZ URL template; ``{s}`` is replaced by a rotating
subdomain when the provider spreads load across hosts.
"""

from __future__ import annotations

from types import MappingProxyType

from domain.models import TileSource
from shared.errors import UnknownSourceError

_SOURCES = (
    TileSource(
        id='arcgis',
        name='ArcGIS World Imagery (Satellite)',
        url=(
            'https://server.arcgisonline.com/ArcGIS/rest/services/'
            'World_Imagery/MapServer/tile/{z}/{y}/{x}'
        ),
        attribution=(
            'Tiles (c) Esri - Source: Esri, i-cubed, USDA, USGS, AEX, GeoEye, '
            'Getmapping, Aerogrid, IGN, IGP, UPR-EGP, and the GIS User Community'
        ),
        terms_of_service='https://www.esri.com/en-us/legal/terms/full-master-agreement',
    ),
    TileSource(
        id='google',
        name='Google Satellite',
        url='https://mt{s}.google.com/vt/lyrs=s&x={x}&y={y}&z={z}',
        subdomains=('0', '1', '2', '3'),
        attribution='(c) Google',
        terms_of_service='https://www.google.com/intl/en_us/help/terms_maps/',
    ),
    TileSource(
        id='esri-world-imagery',
        name='Esri World Imagery (High Resolution)',
        url=(
            'https://services.arcgisonline.com/ArcGIS/rest/services/'
            'World_Imagery/MapServer/tile/{z}/{y}/{x}'
        ),
        attribution='(c) Esri, Maxar, Earthstar Geographics',
        terms_of_service='https://www.esri.com/en-us/legal/terms/full-master-agreement',
    ),
)

TILE_SOURCES: MappingProxyType[str, TileSource] = MappingProxyType(
    {s.id: s for s in _SOURCES}
)


def is_valid_source(source_id: str) -> bool:
    return source_id in TILE_SOURCES


def get_source(source_id: str) -> TileSource:
    try:
        return TILE_SOURCES[source_id]
    except KeyError:
        available = ', '.join(TILE_SOURCES)
        msg = f'Unknown tile source: {source_id}. Available: {available}'
        raise UnknownSourceError(msg) from None


def available_sources() -> list[TileSource]:
    return list(TILE_SOURCES.values())


def tile_url(source_id: str, z: int, x: int, y: int, counter: int = 0) -> str:
    """Expand the source's URL template for one tile.

    Args:
        source_id: Registered source id.
        z: Zoom level.
        x: Tile X coordinate.
        y: Tile Y coordinate.
        counter: Monotonic request counter used to rotate subdomains.

    Returns:
        Fetchable URL.

    Raises:
        UnknownSourceError: if the source is not registered.
    """
    source = get_source(source_id)
    url = source.url.replace('{z}', str(z)).replace('{x}', str(x)).replace('{y}', str(y))
    if source.subdomains:
        url = url.replace('{s}', source.subdomains[counter % len(source.subdomains)])
    return url
