"""Calls from the CLI to a running TileKeeper HTTP server.

Download jobs live inside the process that started them, so a job started
through ``serve`` can only be cancelled by asking that server.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import aiohttp

from shared.constants import HTTP_2XX_MAX, HTTP_2XX_MIN, WILDCARD_HOSTS
from shared.errors import JobNotFoundError, ServerUnavailableError

if TYPE_CHECKING:
    from domain.models import ServiceSettings

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404


def server_url(settings: ServiceSettings) -> str:
    host = 'localhost' if settings.host in WILDCARD_HOSTS else settings.host
    if ':' in host:
        host = f'[{host}]'
    return f'http://{host}:{settings.port}'


async def cancel_remote_job(
    session: aiohttp.ClientSession, base_url: str, job_id: str
) -> bool:
    """Ask the server at ``base_url`` to cancel ``job_id``.

    Returns:
        True if the server was running the job, False if it was idle there.

    Raises:
        JobNotFoundError: the server has no such job.
        ServerUnavailableError: transport failure or an unexpected answer.
    """
    url = f'{base_url.rstrip("/")}/api/download/{job_id}/cancel'
    logger.debug('POST %s', url)
    payload = None
    try:
        resp = await session.post(url)
        try:
            status = resp.status
            if HTTP_2XX_MIN <= status < HTTP_2XX_MAX:
                payload = await resp.json(content_type=None)
        finally:
            resp.release()
    except (aiohttp.ClientError, asyncio.TimeoutError, TimeoutError, ValueError) as e:
        msg = f'Cannot reach TileKeeper server at {base_url}: {e}'
        raise ServerUnavailableError(msg) from e

    if status == HTTP_NOT_FOUND:
        raise JobNotFoundError(job_id)
    if not (HTTP_2XX_MIN <= status < HTTP_2XX_MAX):
        msg = f'Server at {base_url} answered HTTP {status}'
        raise ServerUnavailableError(msg)
    if not isinstance(payload, dict) or 'cancelled' not in payload:
        msg = f'Unexpected cancel response from {base_url}'
        raise ServerUnavailableError(msg)
    return bool(payload['cancelled'])
