"""Network side of tile downloads.

``RequestGate`` spaces out request issuance globally; ``TileFetcher`` turns
one (source, z, x, y) into bytes or a ``FetchError``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import TYPE_CHECKING

import aiohttp

from infrastructure.http.client import (
    close_session,
    make_http_session,
    release_response,
)
from shared.constants import DEFAULT_FETCH_TIMEOUT_S, HTTP_2XX_MAX, HTTP_2XX_MIN
from shared.errors import FetchError
from tiles.sources import tile_url

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RequestGate:
    """Minimum interval between consecutive request issues, shared by all workers.

    ``wait`` reserves the next issue slot ``max(now, last + interval)`` and
    stamps it before sleeping, so overlapping callers queue up one interval
    apart without serialising their sleeps. The reservation contains no
    ``await`` and is therefore atomic within the event loop.
    """

    def __init__(
        self,
        interval_s: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval_s < 0:
            msg = 'interval must not be negative'
            raise ValueError(msg)
        self.interval_s = interval_s
        self._clock = clock
        self._sleep = sleep
        self._last_issue: float | None = None

    @property
    def last_issue(self) -> float | None:
        return self._last_issue

    def reserve(self) -> float:
        """Claim the next issue slot and return the delay until it."""
        now = self._clock()
        if self._last_issue is None:
            slot = now
        else:
            slot = max(now, self._last_issue + self.interval_s)
        self._last_issue = slot
        return slot - now

    async def wait(self) -> None:
        delay = self.reserve()
        if delay > 0:
            await self._sleep(delay)


class TileFetcher:
    """Downloads raw tile bytes over a shared aiohttp session.

    Any transport error, timeout, non-2xx status or empty body raises
    ``FetchError``. There are no retries.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        *,
        timeout_s: float = DEFAULT_FETCH_TIMEOUT_S,
    ) -> None:
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._counter = itertools.count()

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = make_http_session(self._timeout.total or DEFAULT_FETCH_TIMEOUT_S)
            self._owns_session = True
        return self._session

    async def fetch(self, source: str, z: int, x: int, y: int) -> bytes:
        """Fetch one tile.

        Raises:
            UnknownSourceError: if ``source`` is not registered.
            FetchError: on any network or HTTP failure.
        """
        url = tile_url(source, z, x, y, next(self._counter))
        try:
            resp = await self.session.get(url, timeout=self._timeout)
        except (TimeoutError, asyncio.TimeoutError) as e:
            msg = f'Timeout fetching {source} z/x/y={z}/{x}/{y}'
            raise FetchError(msg) from e
        except aiohttp.ClientError as e:
            msg = f'Network error fetching {source} z/x/y={z}/{x}/{y}: {e}'
            raise FetchError(msg) from e

        try:
            sc = resp.status
            if not (HTTP_2XX_MIN <= sc < HTTP_2XX_MAX):
                msg = f'HTTP {sc} for {source} z/x/y={z}/{x}/{y}'
                raise FetchError(msg, status=sc)
            try:
                data = await resp.read()
            except (TimeoutError, asyncio.TimeoutError) as e:
                msg = f'Timeout reading {source} z/x/y={z}/{x}/{y}'
                raise FetchError(msg, status=sc) from e
            except aiohttp.ClientError as e:
                msg = f'Error reading {source} z/x/y={z}/{x}/{y}: {e}'
                raise FetchError(msg, status=sc) from e
        finally:
            release_response(resp)

        if not data:
            msg = f'Empty response for {source} z/x/y={z}/{x}/{y}'
            raise FetchError(msg, status=sc)
        logger.debug('Fetched %s z/x/y=%d/%d/%d (%d bytes)', source, z, x, y, len(data))
        return data

    async def close(self) -> None:
        if self._owns_session:
            await close_session(self._session)
        self._session = None
