"""SQLite-backed tile store with async access.

This module provides TileStore: a persistent key -> blob store partitioned
into namespaces, one SQLite database per namespace. Blocking database work
runs in worker threads so callers on the event loop only await it.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

from domain.errors import StoreUnavailableError, StoreWriteError
from shared.constants import HTTP_2XX_MAX, HTTP_2XX_MIN, HTTP_OK, TILE_STORE_DB_SUFFIX

logger = logging.getLogger(__name__)

_UNSAFE_NAME_RE = re.compile(r'[^A-Za-z0-9_.-]')


@dataclass(frozen=True)
class StoredEntry:
    """A tile blob persisted under a key."""

    key: str
    blob: bytes
    content_type: str
    status: int = HTTP_OK
    stored_at: int = 0
    size_bytes: int = 0

    @property
    def ok(self) -> bool:
        return HTTP_2XX_MIN <= self.status < HTTP_2XX_MAX


@dataclass
class StoreStats:
    """Statistics about one namespace."""

    namespace: str
    total_entries: int
    total_size_bytes: int
    oldest_entry: int | None
    newest_entry: int | None


@dataclass(eq=False)
class StoreHandle:
    """Open namespace of a TileStore."""

    namespace: str
    path: Path
    _conn: sqlite3.Connection | None = field(repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def closed(self) -> bool:
        return self._conn is None


class TileStore:
    """Persistent tile store, one SQLite database per namespace.

    Features:
    - open() is idempotent: the same handle is returned per namespace
    - lookup() treats entries with a non-2xx status as absent
    - put() overwrites, last writer wins

    Usage:
        store = TileStore('/var/cache/tiles')
        handle = await store.open('offline-map-tiles')
        await store.put(handle, key, data, 'image/png')
        entry = await store.lookup(handle, key)
        store.close()
    """

    def __init__(self, store_dir: str | Path) -> None:
        """Initialize tile store.

        Args:
            store_dir: Directory holding one database file per namespace.
                Created lazily on first open().
        """
        self.store_dir = Path(store_dir)
        self._handles: dict[str, StoreHandle] = {}
        self._handles_lock = threading.Lock()
        logger.info('TileStore initialized at %s', self.store_dir)

    def _get_db_path(self, namespace: str) -> Path:
        """Get database file path for a namespace."""
        safe = _UNSAFE_NAME_RE.sub('_', namespace)
        return self.store_dir / f'{safe}{TILE_STORE_DB_SUFFIX}'

    def _init_schema(self, conn: sqlite3.Connection, namespace: str) -> None:
        """Initialize database schema."""
        conn.executescript('''
            CREATE TABLE IF NOT EXISTS metadata (
                name TEXT PRIMARY KEY,
                value TEXT
            );

            CREATE TABLE IF NOT EXISTS entries (
                key TEXT PRIMARY KEY,
                blob BLOB NOT NULL,
                content_type TEXT NOT NULL,
                status INTEGER NOT NULL,
                stored_at INTEGER NOT NULL,
                size_bytes INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_entries_stored_at ON entries(stored_at);
        ''')
        conn.execute(
            "INSERT OR REPLACE INTO metadata (name, value) VALUES ('namespace', ?)",
            (namespace,),
        )
        conn.commit()

    def _open_sync(self, namespace: str) -> StoreHandle:
        if not namespace or not namespace.strip():
            msg = 'Store namespace cannot be empty'
            raise StoreUnavailableError(msg)
        with self._handles_lock:
            handle = self._handles.get(namespace)
            if handle is not None and not handle.closed:
                return handle
            db_path = self._get_db_path(namespace)
            conn: sqlite3.Connection | None = None
            try:
                self.store_dir.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(str(db_path), check_same_thread=False)
                conn.execute('PRAGMA journal_mode=WAL')
                conn.execute('PRAGMA synchronous=NORMAL')
                self._init_schema(conn, namespace)
            except (OSError, sqlite3.Error) as e:
                if conn is not None:
                    conn.close()
                msg = f'Cannot open tile store namespace {namespace!r} at {db_path}: {e}'
                raise StoreUnavailableError(msg) from e
            handle = StoreHandle(namespace=namespace, path=db_path, _conn=conn)
            self._handles[namespace] = handle
        logger.info('Tile store namespace %r opened at %s', namespace, db_path)
        return handle

    def _lookup_sync(self, handle: StoreHandle, key: str) -> StoredEntry | None:
        with handle._lock:
            if handle._conn is None:
                msg = f'Tile store namespace {handle.namespace!r} is closed'
                raise StoreUnavailableError(msg)
            try:
                row = handle._conn.execute(
                    '''SELECT key, blob, content_type, status, stored_at, size_bytes
                       FROM entries WHERE key = ?''',
                    (key,),
                ).fetchone()
            except sqlite3.Error as e:
                msg = f'Lookup failed in namespace {handle.namespace!r}: {e}'
                raise StoreUnavailableError(msg) from e
        if row is None:
            return None
        entry = StoredEntry(
            key=row[0],
            blob=bytes(row[1]),
            content_type=row[2],
            status=row[3],
            stored_at=row[4],
            size_bytes=row[5],
        )
        if not entry.ok:
            logger.debug('Entry %s has status %d, treated as absent', key, entry.status)
            return None
        return entry

    def _put_sync(
        self,
        handle: StoreHandle,
        key: str,
        blob: bytes,
        content_type: str,
        status: int,
    ) -> None:
        now = int(time.time())
        with handle._lock:
            if handle._conn is None:
                msg = f'Tile store namespace {handle.namespace!r} is closed'
                raise StoreWriteError(msg)
            try:
                handle._conn.execute(
                    '''INSERT OR REPLACE INTO entries
                       (key, blob, content_type, status, stored_at, size_bytes)
                       VALUES (?, ?, ?, ?, ?, ?)''',
                    (key, blob, content_type, status, now, len(blob)),
                )
                handle._conn.commit()
            except sqlite3.Error as e:
                msg = f'Cannot write {key!r} to namespace {handle.namespace!r}: {e}'
                raise StoreWriteError(msg) from e

    def _delete_sync(self, handle: StoreHandle, key: str) -> bool:
        with handle._lock:
            if handle._conn is None:
                msg = f'Tile store namespace {handle.namespace!r} is closed'
                raise StoreWriteError(msg)
            try:
                cursor = handle._conn.execute('DELETE FROM entries WHERE key = ?', (key,))
                handle._conn.commit()
            except sqlite3.Error as e:
                msg = f'Cannot delete {key!r} from namespace {handle.namespace!r}: {e}'
                raise StoreWriteError(msg) from e
            return cursor.rowcount > 0

    def _stats_sync(self, handle: StoreHandle) -> StoreStats:
        with handle._lock:
            if handle._conn is None:
                msg = f'Tile store namespace {handle.namespace!r} is closed'
                raise StoreUnavailableError(msg)
            try:
                row = handle._conn.execute(
                    '''SELECT COUNT(*), COALESCE(SUM(size_bytes), 0),
                              MIN(stored_at), MAX(stored_at)
                       FROM entries'''
                ).fetchone()
            except sqlite3.Error as e:
                msg = f'Cannot read stats of namespace {handle.namespace!r}: {e}'
                raise StoreUnavailableError(msg) from e
        count, size, oldest, newest = row
        return StoreStats(
            namespace=handle.namespace,
            total_entries=count,
            total_size_bytes=size,
            oldest_entry=oldest,
            newest_entry=newest,
        )

    async def open(self, namespace: str) -> StoreHandle:
        """Open (or reuse) a namespace.

        Raises:
            StoreUnavailableError: The namespace cannot be opened.
        """
        return await asyncio.to_thread(self._open_sync, namespace)

    async def lookup(self, handle: StoreHandle, key: str) -> StoredEntry | None:
        """Get an entry, or None when absent or not OK.

        Raises:
            StoreUnavailableError: The namespace is closed or unreadable.
        """
        return await asyncio.to_thread(self._lookup_sync, handle, key)

    async def put(
        self,
        handle: StoreHandle,
        key: str,
        blob: bytes,
        content_type: str,
        status: int = HTTP_OK,
    ) -> None:
        """Store an entry, overwriting any previous one.

        Raises:
            StoreWriteError: The write failed.
        """
        await asyncio.to_thread(self._put_sync, handle, key, blob, content_type, status)

    async def exists(self, handle: StoreHandle, key: str) -> bool:
        return await self.lookup(handle, key) is not None

    async def delete(self, handle: StoreHandle, key: str) -> bool:
        """Delete an entry. Returns True if something was deleted."""
        return await asyncio.to_thread(self._delete_sync, handle, key)

    async def stats(self, handle: StoreHandle) -> StoreStats:
        """Namespace statistics.

        Raises:
            StoreUnavailableError: The namespace is closed or unreadable.
        """
        return await asyncio.to_thread(self._stats_sync, handle)

    def close(self) -> None:
        """Close all open namespaces."""
        with self._handles_lock:
            for handle in self._handles.values():
                with handle._lock:
                    if handle._conn is not None:
                        handle._conn.close()
                        handle._conn = None
            self._handles.clear()
        logger.info('TileStore closed')

    def __enter__(self) -> TileStore:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()
