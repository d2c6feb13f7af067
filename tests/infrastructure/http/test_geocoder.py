"""Tests for reverse geocoding of job bounds."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from domain.models import GeoBounds, Location
from infrastructure.http.geocoder import (
    clean_location_string,
    location_for_bounds,
    location_from_address,
)

BOUNDS = GeoBounds(north=40.76, south=40.74, east=-73.97, west=-73.99)


def make_session(status: int = 200, payload=None, side_effect=None) -> MagicMock:
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=payload)
    resp.release = MagicMock()
    session = MagicMock()
    session.get = AsyncMock(return_value=resp, side_effect=side_effect)
    return session


class TestLocationHelpers:
    """Tests for address parsing helpers."""

    def test_clean_location_string(self):
        assert clean_location_string('  Paris ') == 'Paris'
        assert clean_location_string('   ') is None
        assert clean_location_string(None) is None
        assert clean_location_string(42) is None

    def test_city_preference_order(self):
        address = {'country': 'France', 'town': 'Annecy', 'state': 'Auvergne'}
        assert location_from_address(address) == Location(country='France', city='Annecy')

    def test_falls_back_to_state(self):
        address = {'country': 'Mongolia', 'city': ' ', 'state': 'Khentii'}
        assert location_from_address(address).city == 'Khentii'

    def test_empty_address(self):
        assert location_from_address({}) == Location()


class TestLocationForBounds:
    """Tests for location_for_bounds with a mocked session."""

    @pytest.mark.asyncio
    async def test_success(self):
        session = make_session(
            payload={'address': {'country': 'United States', 'city': 'New York'}}
        )
        location = await location_for_bounds(session, BOUNDS)

        assert location == Location(country='United States', city='New York')
        params = session.get.call_args.kwargs['params']
        assert params['lat'] == '40.750000'
        assert params['lon'] == '-73.980000'
        assert params['format'] == 'json'
        assert 'User-Agent' in session.get.call_args.kwargs['headers']

    @pytest.mark.asyncio
    async def test_http_error_gives_empty_location(self):
        session = make_session(status=503)
        assert await location_for_bounds(session, BOUNDS) == Location()
        session.get.return_value.release.assert_called_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        'error',
        [aiohttp.ClientConnectionError('down'), asyncio.TimeoutError()],
    )
    async def test_transport_error_gives_empty_location(self, error):
        session = make_session(side_effect=error)
        assert await location_for_bounds(session, BOUNDS) == Location()

    @pytest.mark.asyncio
    async def test_bad_json_gives_empty_location(self):
        session = make_session()
        session.get.return_value.json = AsyncMock(side_effect=ValueError('bad json'))
        assert await location_for_bounds(session, BOUNDS) == Location()

    @pytest.mark.asyncio
    async def test_missing_address(self):
        session = make_session(payload={'error': 'Unable to geocode'})
        assert await location_for_bounds(session, BOUNDS) == Location()
