from __future__ import annotations

import contextlib
import logging
import ssl

import aiohttp
import certifi

from shared.constants import DEFAULT_FETCH_TIMEOUT_S, HTTP_USER_AGENT

logger = logging.getLogger(__name__)


def make_http_session(
    timeout_s: float = DEFAULT_FETCH_TIMEOUT_S,
    *,
    limit: int = 0,
) -> aiohttp.ClientSession:
    """Клиентская сессия с сертификатами certifi и общим таймаутом запроса.

    limit=0 означает без ограничения пула соединений: параллелизм
    ограничивает планировщик загрузок.
    """
    # Создать SSL-контекст с сертификатами из certifi
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context, limit=limit)
    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout_s),
        headers={'User-Agent': HTTP_USER_AGENT},
    )


def release_response(resp: aiohttp.ClientResponse) -> None:
    """Вернуть соединение ответа в пул."""
    try:
        resp.release()
    except Exception as e:  # noqa: BLE001
        logger.debug('Failed to release response: %s', e)


async def close_session(session: aiohttp.ClientSession | None) -> None:
    if session is None or session.closed:
        return
    with contextlib.suppress(aiohttp.ClientError):
        await session.close()
