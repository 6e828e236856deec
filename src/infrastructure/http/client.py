from __future__ import annotations

import contextlib
import logging
import os
import sqlite3
import ssl
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import aiohttp
import certifi
from aiohttp_client_cache import CachedSession, SQLiteBackend

from domain.errors import TileNetworkError
from shared.constants import (
    HTTP_2XX_MAX,
    HTTP_2XX_MIN,
    HTTP_CACHE_EXPIRE_HOURS,
    HTTP_CACHE_RESPECT_HEADERS,
    HTTP_CACHE_STALE_IF_ERROR_HOURS,
    HTTP_TIMEOUT_DEFAULT,
    TILE_STORE_DIR,
    TILE_STORE_DIR_ENV,
)

logger = logging.getLogger(__name__)


def resolve_store_dir() -> Path:
    # Явно заданный каталог хранилища
    raw = os.getenv(TILE_STORE_DIR_ENV)
    if raw:
        return Path(raw).expanduser().resolve()
    # Fallback: user's home directory
    return (Path.home() / TILE_STORE_DIR).resolve()


def make_http_session(cache_dir: Path | None = None) -> aiohttp.ClientSession:
    """Create the HTTP session used to reach tile origins.

    With ``cache_dir`` the session also keeps an HTTP response cache
    (aiohttp_client_cache, SQLite backend) that honours Cache-Control.
    """
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)

    if cache_dir is not None:
        cache_dir.mkdir(parents=True, exist_ok=True)
        cache_path = cache_dir / 'http_cache.sqlite'
        with contextlib.suppress(Exception):
            if not cache_path.exists():
                with sqlite3.connect(cache_path) as _conn:
                    _conn.execute('PRAGMA journal_mode=WAL;')
        expire_td = timedelta(hours=max(0, int(HTTP_CACHE_EXPIRE_HOURS)))
        stale_hours = int(HTTP_CACHE_STALE_IF_ERROR_HOURS)
        stale_param: bool | timedelta
        stale_param = timedelta(hours=stale_hours) if stale_hours > 0 else False
        backend = SQLiteBackend(str(cache_path), expire_after=expire_td)
        return CachedSession(
            cache=backend,
            connector=connector,
            expire_after=expire_td,
            cache_control=bool(HTTP_CACHE_RESPECT_HEADERS),
            stale_if_error=stale_param,
        )
    return aiohttp.ClientSession(connector=connector)


@dataclass(frozen=True)
class FetchResponse:
    """Status, content type and body of a fetched resource."""

    status: int
    content_type: str | None
    data: bytes

    @property
    def ok(self) -> bool:
        return HTTP_2XX_MIN <= self.status < HTTP_2XX_MAX


class HttpTransport:
    """Fetches tile bytes over HTTP.

    Non-2xx responses are returned as they are; only transport-level failures
    (connection errors, timeouts) raise TileNetworkError.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
    ):
        self._session = session
        self._timeout = timeout

    async def fetch(self, url: str) -> FetchResponse:
        try:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            resp = await self._session.get(url, timeout=timeout)
            try:
                status = resp.status
                content_type = resp.headers.get('Content-Type')
                data = await resp.read() if HTTP_2XX_MIN <= status < HTTP_2XX_MAX else b''
            finally:
                # Освобождение ресурсов ответа для обоих типов (aiohttp и CachedResponse)
                try:
                    close = getattr(resp, 'close', None)
                    if callable(close):
                        close()
                    release = getattr(resp, 'release', None)
                    if callable(release):
                        release()
                except Exception as e:
                    logger.debug('Failed to cleanup HTTP response: %s', e, exc_info=True)
        except (TimeoutError, aiohttp.ClientError) as e:
            msg = f'Failed to fetch {url}: {e!r}'
            raise TileNetworkError(msg, url=url) from e
        logger.debug('GET %s -> %d (%d bytes)', url, status, len(data))
        return FetchResponse(status=status, content_type=content_type, data=data)
