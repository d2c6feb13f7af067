"""Reverse geocoding of job bounds via Nominatim (OpenStreetMap).

Best effort: any failure gives an empty ``Location`` and never fails a
download.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import aiohttp

from domain.models import Location
from shared.constants import (
    GEOCODER_TIMEOUT_S,
    GEOCODER_ZOOM,
    HTTP_2XX_MAX,
    HTTP_2XX_MIN,
    HTTP_USER_AGENT,
    NOMINATIM_REVERSE_URL,
)

if TYPE_CHECKING:
    from domain.models import GeoBounds

logger = logging.getLogger(__name__)

# Поля адреса Nominatim в порядке предпочтения для «города»
CITY_FIELDS = ('city', 'town', 'village', 'municipality', 'county', 'state')


def clean_location_string(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def location_from_address(address: dict[str, Any]) -> Location:
    country = clean_location_string(address.get('country'))
    city = None
    for name in CITY_FIELDS:
        city = clean_location_string(address.get(name))
        if city:
            break
    return Location(country=country, city=city)


async def location_for_bounds(
    session: aiohttp.ClientSession,
    bounds: GeoBounds,
    *,
    url: str = NOMINATIM_REVERSE_URL,
    timeout_s: float = GEOCODER_TIMEOUT_S,
) -> Location:
    """Country and city at the centre of ``bounds``."""
    lat, lon = bounds.center
    params = {
        'lat': f'{lat:.6f}',
        'lon': f'{lon:.6f}',
        'format': 'json',
        'addressdetails': '1',
        'zoom': str(GEOCODER_ZOOM),
    }
    logger.debug('Reverse geocoding %.6f, %.6f', lat, lon)
    try:
        resp = await session.get(
            url,
            params=params,
            headers={'User-Agent': HTTP_USER_AGENT},
            timeout=aiohttp.ClientTimeout(total=timeout_s),
        )
        try:
            if not (HTTP_2XX_MIN <= resp.status < HTTP_2XX_MAX):
                logger.debug('Geocoding failed: HTTP %s', resp.status)
                return Location()
            payload = await resp.json(content_type=None)
        finally:
            resp.release()
    except (aiohttp.ClientError, asyncio.TimeoutError, TimeoutError, ValueError) as e:
        logger.debug('Geocoding error: %s', e)
        return Location()

    address = payload.get('address') if isinstance(payload, dict) else None
    if not isinstance(address, dict):
        logger.warning('Geocoding returned no address data')
        return Location()

    location = location_from_address(address)
    logger.debug('Geocoding result: %s, %s', location.city, location.country)
    return location
