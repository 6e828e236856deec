"""Cache-aside tile layer.

CachedTileLayer decides for every requested tile whether it is served from
the tile store, fetched from the origin (and saved), or replaced by a blank
tile when working offline.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from domain.errors import StoreUnavailableError, TileNetworkError
from domain.models import ImageSource, TileHandle, TileRequest, TileResult
from shared.constants import ASYNC_MAX_CONCURRENCY, HIT_FETCH_ATTEMPTS, TileEvent
from tiles.codec import reencode_tile
from tiles.events import EventNotifier
from tiles.keys import derive_cache_key
from tiles.urls import format_tile_url

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from domain.models import DoneCallback, LayerOptions, TileCoordinate
    from infrastructure.http.client import FetchResponse, HttpTransport
    from tiles.events import TileListener
    from tiles.store import StoreHandle, TileStore

logger = logging.getLogger(__name__)

_CROSS_ORIGIN_ANONYMOUS = 'anonymous'


class CachedTileLayer:
    """Tile layer with a persistent cache in front of the tile origin.

    Usage:
        layer = CachedTileLayer(options, transport=transport, store=store)
        layer.on(TileEvent.CACHE_MISS, listener)
        tile = layer.request_tile(TileCoordinate(x=4, y=5, z=3), done)
        result = await tile.result
    """

    def __init__(
        self,
        options: LayerOptions,
        *,
        transport: HttpTransport,
        store: TileStore | None = None,
        notifier: EventNotifier | None = None,
    ) -> None:
        self.options = options
        self.transport = transport
        self.store = store
        self.notifier = notifier or EventNotifier()
        # None, если кэш для слоя выключен
        self._cache_name = options.namespace
        self._handle: StoreHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()

        self._stats_cache_hits = 0
        self._stats_cache_misses = 0
        self._stats_downloads = 0
        self._stats_errors = 0
        self._stats_offline_misses = 0
        self._stats_save_failures = 0
        self._stats_store_unavailable = 0
        logger.info(
            'CachedTileLayer created: cache=%s save=%s only_cache=%s format=%s',
            self._cache_name,
            options.save_to_cache,
            options.use_only_cache,
            options.cache_format,
        )

    @property
    def cache_name(self) -> str | None:
        return self._cache_name

    @property
    def stats(self) -> dict:
        """Get layer statistics."""
        return {
            'cache_hits': self._stats_cache_hits,
            'cache_misses': self._stats_cache_misses,
            'downloads': self._stats_downloads,
            'errors': self._stats_errors,
            'offline_misses': self._stats_offline_misses,
            'save_failures': self._stats_save_failures,
            'store_unavailable': self._stats_store_unavailable,
            'pending': len(self._tasks),
        }

    def on(self, event: TileEvent | str, listener: TileListener) -> None:
        self.notifier.on(event, listener)

    def off(self, event: TileEvent | str, listener: TileListener) -> None:
        self.notifier.off(event, listener)

    def get_tile_url(self, coord: TileCoordinate, *, retina: bool = False) -> str:
        return format_tile_url(self.options.url_template, coord, self.options, retina=retina)

    def cache_key(self, origin_url: str) -> str:
        """Store key of an origin URL for this layer."""
        if self._cache_name is None:
            msg = 'Caching is disabled for this layer'
            raise RuntimeError(msg)
        return derive_cache_key(self._cache_name, origin_url, self.options.origin_prefix)

    def request_tile(
        self,
        coord: TileCoordinate,
        done: DoneCallback | None = None,
        *,
        retina: bool = False,
    ) -> TileHandle:
        """Start loading a tile and return its handle right away.

        ``done(error, tile)`` is called exactly once when the tile resolves;
        ``tile.result`` completes at the same time. Must be called from a
        running event loop.
        A template placeholder with no value raises ValueError here, before
        anything is scheduled.
        """
        loop = asyncio.get_running_loop()
        tile = TileHandle(
            coordinate=coord,
            url=self.get_tile_url(coord, retina=retina),
            cross_origin=_CROSS_ORIGIN_ANONYMOUS if self.options.cross_origin else None,
            result=loop.create_future(),
        )
        request = TileRequest(coordinate=coord, origin_url=tile.url, tile=tile, done=done)
        task = loop.create_task(self._run(request))
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_task_done(t, tile))
        return tile

    def _on_task_done(self, task: asyncio.Task[None], tile: TileHandle) -> None:
        self._tasks.discard(task)
        # Отменённый запрос: done не вызывается, result отменяется
        if task.cancelled() and tile.result is not None:
            tile.result.cancel()

    async def resolve_many(
        self,
        coords: Iterable[TileCoordinate],
        *,
        concurrency: int = ASYNC_MAX_CONCURRENCY,
        on_progress: Callable[[int], Awaitable[None]] | None = None,
    ) -> dict[TileCoordinate, TileResult]:
        """Resolve many tiles concurrently, returning results keyed by coordinate."""
        sem = asyncio.Semaphore(concurrency)
        out: dict[TileCoordinate, TileResult] = {}

        async def _worker(coord: TileCoordinate) -> None:
            async with sem:
                tile = self.request_tile(coord)
                result = await tile.result
            out[coord] = result
            if on_progress is not None:
                try:
                    await on_progress(1)
                except Exception as e:
                    logger.debug('Progress callback failed: %s', e, exc_info=True)

        await asyncio.gather(*(_worker(c) for c in dict.fromkeys(coords)))
        return out

    async def resolve_tile(self, request: TileRequest) -> TileResult:
        """Resolve one tile request to an image source or a failure.

        Never raises for store or network problems: those end up either
        recovered or in ``TileResult.error``.
        """
        if self._cache_name is None:
            return await self._load_direct(request)

        key = self.cache_key(request.origin_url)
        try:
            handle = await self._open_store()
            entry = await self.store.lookup(handle, key)
        except StoreUnavailableError as e:
            self._stats_store_unavailable += 1
            logger.warning(
                'Tile store unavailable for %s, loading from origin: %s',
                request.coordinate,
                e,
            )
            return await self._load_direct(request)

        if entry is not None:
            return await self._on_cache_hit(request, handle)
        return await self._on_cache_miss(request, key)

    async def _run(self, request: TileRequest) -> None:
        try:
            result = await self.resolve_tile(request)
        except Exception as e:
            logger.exception('Unexpected error while loading tile %s', request.coordinate)
            self._stats_errors += 1
            result = TileResult(coordinate=request.coordinate, error=e)
        self._complete(request, result)

    def _complete(self, request: TileRequest, result: TileResult) -> None:
        tile = request.tile
        if tile is not None:
            if result.ok:
                tile.src = result.source.url
            if tile.result is not None and not tile.result.done():
                tile.result.set_result(result)
        if request.done is not None:
            try:
                request.done(result.error, tile)
            except Exception:
                logger.exception('Tile completion callback failed for %s', request.coordinate)

    async def _open_store(self) -> StoreHandle:
        if self.store is None:
            msg = 'No tile store configured'
            raise StoreUnavailableError(msg)
        if self._handle is None or self._handle.closed:
            self._handle = await self.store.open(self._cache_name)
        return self._handle

    async def _fetch_origin(self, url: str) -> FetchResponse:
        resp = await self.transport.fetch(url)
        self._stats_downloads += 1
        if not resp.ok:
            msg = f'HTTP {resp.status} for tile {url}'
            raise TileNetworkError(msg, url=url, status=resp.status)
        return resp

    async def _load_direct(self, request: TileRequest) -> TileResult:
        url = request.origin_url
        try:
            resp = await self._fetch_origin(url)
        except TileNetworkError as e:
            return self._fail(request, e)
        source = ImageSource(url=url, data=resp.data, content_type=resp.content_type)
        return TileResult(coordinate=request.coordinate, source=source)

    async def _on_cache_hit(self, request: TileRequest, handle: StoreHandle) -> TileResult:
        self._stats_cache_hits += 1
        # Адрес записи выводится заново, а не берётся из результата lookup
        cache_url = self.cache_key(request.origin_url)
        self.notifier.emit(TileEvent.CACHE_HIT, self._subject(request), cache_url)

        last_exc: Exception | None = None
        for attempt in range(HIT_FETCH_ATTEMPTS):
            try:
                entry = await self.store.lookup(handle, cache_url)
            except StoreUnavailableError as e:
                last_exc = e
            else:
                if entry is not None:
                    self._mark_anonymous(request)
                    source = ImageSource(
                        url=cache_url,
                        data=entry.blob,
                        content_type=entry.content_type,
                        from_cache=True,
                    )
                    return TileResult(coordinate=request.coordinate, source=source)
                last_exc = None
            logger.warning(
                'Cached tile %s could not be read (attempt %d/%d)',
                cache_url,
                attempt + 1,
                HIT_FETCH_ATTEMPTS,
            )
        reason = last_exc if last_exc is not None else 'entry disappeared'
        msg = f'Cached tile {cache_url} could not be read: {reason}'
        return self._fail(request, TileNetworkError(msg, url=cache_url))

    async def _on_cache_miss(self, request: TileRequest, key: str) -> TileResult:
        self._stats_cache_misses += 1
        url = request.origin_url
        self.notifier.emit(TileEvent.CACHE_MISS, self._subject(request), url)

        if self.options.use_only_cache:
            # Offline, not cached
            self._stats_offline_misses += 1
            logger.debug('Tile not in cache %s', url)
            return TileResult(coordinate=request.coordinate, source=ImageSource.blank())

        self._mark_anonymous(request)
        try:
            resp = await self._fetch_origin(url)
        except TileNetworkError as e:
            return self._fail(request, e)

        if self.options.save_to_cache:
            await self._save_tile(key, resp.data)
        source = ImageSource(url=url, data=resp.data, content_type=resp.content_type)
        return TileResult(coordinate=request.coordinate, source=source)

    async def _save_tile(self, key: str, data: bytes) -> bool:
        """Re-encode and persist a fetched tile. Failures are logged only."""
        cache_format = self.options.cache_format
        try:
            blob = await asyncio.to_thread(reencode_tile, data, cache_format)
            handle = await self._open_store()
            await self.store.put(handle, key, blob, cache_format)
        except Exception as e:
            # Любая ошибка перекодирования или записи: тайл всё равно отдаётся
            self._stats_save_failures += 1
            logger.warning('Failed to save tile %s to cache: %r', key, e)
            return False
        logger.debug('Saved %s to cache (%d bytes, %s)', key, len(blob), cache_format)
        return True

    def _fail(self, request: TileRequest, error: TileNetworkError) -> TileResult:
        self._stats_errors += 1
        logger.warning('Tile %s failed to load: %s', request.coordinate, error)
        return TileResult(coordinate=request.coordinate, error=error)

    @staticmethod
    def _subject(request: TileRequest) -> object:
        return request.tile if request.tile is not None else request.coordinate

    @staticmethod
    def _mark_anonymous(request: TileRequest) -> None:
        if request.tile is not None:
            request.tile.cross_origin = _CROSS_ORIGIN_ANONYMOUS
