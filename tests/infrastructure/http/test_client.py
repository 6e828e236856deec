"""Tests for the HTTP transport."""

import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
from aiohttp_client_cache import CachedSession

from domain.errors import TileNetworkError
from infrastructure.http.client import (
    FetchResponse,
    HttpTransport,
    make_http_session,
    resolve_store_dir,
)

URL = 'http://origin/toner/3/4/5.png'


def _mock_response(status: int, data: bytes = b'', content_type: str = 'image/png'):
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.headers = {'Content-Type': content_type}
    mock_response.read = AsyncMock(return_value=data)
    mock_response.close = MagicMock()
    mock_response.release = MagicMock()
    return mock_response


class TestResolveStoreDir:
    """Tests for resolve_store_dir function."""

    def test_returns_path_in_home(self):
        with patch.dict('os.environ', {'TILE_STORE_DIR': ''}, clear=False):
            result = resolve_store_dir()
        assert isinstance(result, Path)
        assert result.is_absolute()
        assert '.offline_tiles' in str(result)

    def test_env_override(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with patch.dict('os.environ', {'TILE_STORE_DIR': tmpdir}, clear=False):
                result = resolve_store_dir()
            assert result == Path(tmpdir).resolve()


class TestMakeHttpSession:
    """Tests for make_http_session function."""

    @pytest.mark.asyncio
    async def test_creates_session_without_cache(self):
        """Should create a plain session when cache_dir is None."""
        session = make_http_session(None)
        assert isinstance(session, aiohttp.ClientSession)
        assert not isinstance(session, CachedSession)
        await session.close()

    @pytest.mark.asyncio
    async def test_creates_cached_session_with_cache_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cache_dir = Path(tmpdir) / 'http'
            session = make_http_session(cache_dir)
            assert isinstance(session, CachedSession)
            assert cache_dir.exists()
            await session.close()


class TestFetchResponse:
    """Tests for FetchResponse."""

    def test_ok(self):
        assert FetchResponse(status=200, content_type=None, data=b'').ok
        assert FetchResponse(status=204, content_type=None, data=b'').ok
        assert not FetchResponse(status=304, content_type=None, data=b'').ok
        assert not FetchResponse(status=404, content_type=None, data=b'').ok


class TestHttpTransport:
    """Tests for HttpTransport.fetch."""

    @pytest.mark.asyncio
    async def test_fetch_ok(self):
        mock_response = _mock_response(200, b'png-bytes')
        mock_session = MagicMock()
        mock_session.get = AsyncMock(return_value=mock_response)

        resp = await HttpTransport(mock_session, timeout=5).fetch(URL)

        assert resp == FetchResponse(status=200, content_type='image/png', data=b'png-bytes')
        assert mock_session.get.call_args.args == (URL,)
        assert mock_session.get.call_args.kwargs['timeout'].total == 5
        mock_response.close.assert_called_once()
        mock_response.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_fetch_error_status_is_returned(self):
        mock_response = _mock_response(404, content_type='text/html')
        mock_session = MagicMock()
        mock_session.get = AsyncMock(return_value=mock_response)

        resp = await HttpTransport(mock_session).fetch(URL)

        assert resp.status == 404
        assert not resp.ok
        assert resp.data == b''
        mock_response.read.assert_not_called()
        mock_response.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_connection_error_raises_network_error(self):
        mock_session = MagicMock()
        mock_session.get = AsyncMock(side_effect=aiohttp.ClientConnectionError('refused'))

        with pytest.raises(TileNetworkError) as exc_info:
            await HttpTransport(mock_session).fetch(URL)
        assert exc_info.value.url == URL

    @pytest.mark.asyncio
    async def test_timeout_raises_network_error(self):
        mock_session = MagicMock()
        mock_session.get = AsyncMock(side_effect=TimeoutError())

        with pytest.raises(TileNetworkError):
            await HttpTransport(mock_session).fetch(URL)

    @pytest.mark.asyncio
    async def test_read_failure_releases_response(self):
        mock_response = _mock_response(200)
        mock_response.read = AsyncMock(side_effect=aiohttp.ClientPayloadError('truncated'))
        mock_session = MagicMock()
        mock_session.get = AsyncMock(return_value=mock_response)

        with pytest.raises(TileNetworkError):
            await HttpTransport(mock_session).fetch(URL)
        mock_response.close.assert_called_once()
