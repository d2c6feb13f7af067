"""Tests for RequestGate and TileFetcher."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from shared.errors import FetchError, UnknownSourceError
from tiles.fetcher import RequestGate, TileFetcher


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 100.0) -> None:
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)


def make_response(status: int = 200, body: bytes = b'png-bytes') -> MagicMock:
    resp = MagicMock()
    resp.status = status
    resp.read = AsyncMock(return_value=body)
    resp.release = MagicMock()
    return resp


def make_session(resp=None, side_effect=None) -> MagicMock:
    session = MagicMock()
    session.closed = False
    session.get = AsyncMock(return_value=resp, side_effect=side_effect)
    return session


class TestRequestGate:
    """Tests for RequestGate spacing."""

    def test_first_reserve_is_immediate(self):
        clock = FakeClock()
        gate = RequestGate(0.5, clock=clock)
        assert gate.reserve() == 0
        assert gate.last_issue == 100.0

    def test_back_to_back_reserves_are_spaced(self):
        clock = FakeClock()
        gate = RequestGate(0.5, clock=clock)
        delays = [gate.reserve() for _ in range(4)]
        assert delays == pytest.approx([0, 0.5, 1.0, 1.5])
        assert gate.last_issue == pytest.approx(101.5)

    def test_idle_gate_does_not_accumulate_credit(self):
        clock = FakeClock()
        gate = RequestGate(0.5, clock=clock)
        gate.reserve()
        clock.now += 10
        assert gate.reserve() == 0
        assert gate.reserve() == pytest.approx(0.5)

    def test_zero_interval(self):
        gate = RequestGate(0, clock=FakeClock())
        assert [gate.reserve() for _ in range(3)] == [0, 0, 0]

    def test_negative_interval_rejected(self):
        with pytest.raises(ValueError):
            RequestGate(-1)

    @pytest.mark.asyncio
    async def test_wait_sleeps_only_when_needed(self):
        clock = FakeClock()
        gate = RequestGate(0.25, clock=clock, sleep=clock.sleep)
        await gate.wait()
        await gate.wait()
        await gate.wait()
        assert clock.sleeps == pytest.approx([0.25, 0.5])


class TestTileFetcher:
    """Tests for TileFetcher with a mocked session."""

    @pytest.mark.asyncio
    async def test_fetch_success(self):
        resp = make_response(body=b'tile')
        session = make_session(resp)
        fetcher = TileFetcher(session)

        data = await fetcher.fetch('arcgis', 15, 100, 200)

        assert data == b'tile'
        url = session.get.call_args.args[0]
        assert url.endswith('/tile/15/200/100')
        resp.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_fetch_rotates_subdomains(self):
        session = make_session(make_response())
        fetcher = TileFetcher(session)
        for _ in range(2):
            await fetcher.fetch('google', 1, 0, 0)
        urls = [c.args[0] for c in session.get.call_args_list]
        assert urls[0].startswith('https://mt0.')
        assert urls[1].startswith('https://mt1.')

    @pytest.mark.asyncio
    async def test_non_2xx_raises_with_status(self):
        resp = make_response(status=404)
        fetcher = TileFetcher(make_session(resp))
        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch('arcgis', 1, 0, 0)
        assert exc_info.value.status == 404
        assert 'HTTP 404' in str(exc_info.value)
        resp.read.assert_not_called()
        resp.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_network_error(self):
        session = make_session(side_effect=aiohttp.ClientConnectionError('refused'))
        fetcher = TileFetcher(session)
        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch('arcgis', 1, 0, 0)
        assert exc_info.value.status is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        session = make_session(side_effect=asyncio.TimeoutError())
        fetcher = TileFetcher(session)
        with pytest.raises(FetchError, match='Timeout'):
            await fetcher.fetch('arcgis', 1, 0, 0)

    @pytest.mark.asyncio
    async def test_read_error(self):
        resp = make_response()
        resp.read = AsyncMock(side_effect=aiohttp.ClientPayloadError('truncated'))
        fetcher = TileFetcher(make_session(resp))
        with pytest.raises(FetchError):
            await fetcher.fetch('arcgis', 1, 0, 0)
        resp.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_empty_body(self):
        fetcher = TileFetcher(make_session(make_response(body=b'')))
        with pytest.raises(FetchError, match='Empty'):
            await fetcher.fetch('arcgis', 1, 0, 0)

    @pytest.mark.asyncio
    async def test_unknown_source_is_not_fetch_error(self):
        session = make_session(make_response())
        fetcher = TileFetcher(session)
        with pytest.raises(UnknownSourceError):
            await fetcher.fetch('bing', 1, 0, 0)
        session.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_close_leaves_borrowed_session_open(self):
        session = make_session(make_response())
        session.close = AsyncMock()
        fetcher = TileFetcher(session)
        await fetcher.close()
        session.close.assert_not_called()
