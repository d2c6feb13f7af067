"""Tests for CLI calls to a running server."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from domain.models import ServiceSettings
from infrastructure.http.api_client import cancel_remote_job, server_url
from shared.errors import JobNotFoundError, ServerUnavailableError


def make_session(status: int = 200, payload=None, side_effect=None) -> MagicMock:
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=payload)
    resp.release = MagicMock()
    session = MagicMock()
    session.post = AsyncMock(return_value=resp, side_effect=side_effect)
    return session


class TestServerUrl:
    def test_wildcard_host_becomes_localhost(self):
        assert server_url(ServiceSettings()) == 'http://localhost:3000'

    def test_explicit_host(self):
        assert server_url(ServiceSettings(host='10.0.0.5', port=8080)) == 'http://10.0.0.5:8080'

    def test_ipv6_host(self):
        assert server_url(ServiceSettings(host='::1', port=8080)) == 'http://[::1]:8080'


class TestCancelRemoteJob:
    """Tests for cancel_remote_job with a mocked session."""

    @pytest.mark.asyncio
    async def test_cancelled(self):
        session = make_session(payload={'jobId': 'abc', 'cancelled': True})
        assert await cancel_remote_job(session, 'http://srv:3000/', 'abc') is True
        assert session.post.call_args.args[0] == 'http://srv:3000/api/download/abc/cancel'
        session.post.return_value.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_not_running(self):
        session = make_session(payload={'jobId': 'abc', 'cancelled': False})
        assert await cancel_remote_job(session, 'http://srv:3000', 'abc') is False

    @pytest.mark.asyncio
    async def test_unknown_job(self):
        session = make_session(status=404)
        with pytest.raises(JobNotFoundError):
            await cancel_remote_job(session, 'http://srv:3000', 'abc')
        session.post.return_value.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_server_error(self):
        session = make_session(status=500)
        with pytest.raises(ServerUnavailableError, match='HTTP 500'):
            await cancel_remote_job(session, 'http://srv:3000', 'abc')

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        session = make_session(side_effect=aiohttp.ClientConnectionError('refused'))
        with pytest.raises(ServerUnavailableError, match='Cannot reach'):
            await cancel_remote_job(session, 'http://srv:3000', 'abc')

    @pytest.mark.asyncio
    async def test_unexpected_body(self):
        session = make_session(payload=['not', 'an', 'object'])
        with pytest.raises(ServerUnavailableError, match='Unexpected'):
            await cancel_remote_job(session, 'http://srv:3000', 'abc')
